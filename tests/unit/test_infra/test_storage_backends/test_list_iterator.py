"""Unit tests for the lazy listing iterator."""

import asyncio

import pytest

from common_blob.infra.storage.backends.iterator import (
    IteratorState,
    ListIterator,
    ListPage,
    MarkerPager,
)
from common_blob.infra.storage.backends.protocol import ListObject
from common_blob.infra.storage.exceptions import (
    EndOfSequence,
    StorageBackendError,
    StorageCancelledError,
    StorageError,
)


class FakePages:
    """Marker-driven page source recording every request it serves."""

    def __init__(self, pages: list[list[str]]):
        self.pages = pages
        self.calls: list[str | None] = []
        self.fail_on_call: int | None = None
        self.gate: asyncio.Event | None = None

    async def __call__(self, marker: str | None) -> ListPage:
        self.calls.append(marker)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on_call == len(self.calls):
            raise StorageBackendError("Access Denied", backend_code="AccessDenied")
        index = 0 if marker is None else int(marker)
        next_marker = str(index + 1) if index + 1 < len(self.pages) else None
        return ListPage(
            objects=[ListObject(key=key) for key in self.pages[index]],
            next_marker=next_marker,
        )


async def _drain(iterator: ListIterator) -> list[str]:
    return [entry.key async for entry in iterator]


class TestMarkerPagination:
    """Test marker-driven listing."""

    async def test_multi_page_listing_has_no_duplicates(self):
        """Test every entry of every page appears exactly once, in order."""
        pages = FakePages([["a", "b"], ["c", "d"], ["e"]])
        iterator = ListIterator.from_pages(pages)

        keys = await _drain(iterator)

        assert keys == ["a", "b", "c", "d", "e"]
        assert pages.calls == [None, "1", "2"]
        assert iterator.state is IteratorState.EXHAUSTED
        assert iterator.yielded == 5

    async def test_single_pull_keeps_rest_of_page_buffered(self):
        """Test that one pull issues one request and queues the remainder."""
        pages = FakePages([["a", "b", "c"], ["d"]])
        iterator = ListIterator.from_pages(pages)

        first = await iterator.next()

        assert first.key == "a"
        assert pages.calls == [None]
        assert iterator.state is IteratorState.BUFFERED

        assert (await iterator.next()).key == "b"
        assert (await iterator.next()).key == "c"
        assert pages.calls == [None]

    async def test_empty_listing(self):
        """Test an empty first page ends the pass."""
        iterator = ListIterator.from_pages(FakePages([[]]))

        with pytest.raises(EndOfSequence):
            await iterator.next()

    async def test_exhausted_iterator_keeps_raising_end_of_sequence(self):
        """Test pulls after exhaustion keep signalling the end."""
        pages = FakePages([["a"]])
        iterator = ListIterator.from_pages(pages)
        await iterator.next()

        for _ in range(2):
            with pytest.raises(EndOfSequence):
                await iterator.next()
        assert pages.calls == [None]

    async def test_empty_intermediate_page_is_skipped(self):
        """Test a page without entries but with a marker keeps paging."""
        iterator = ListIterator.from_pages(FakePages([[], ["a"]]))

        assert await _drain(iterator) == ["a"]

    async def test_end_of_sequence_is_not_a_storage_error(self):
        """Test the sentinel never matches StorageError handlers."""
        iterator = ListIterator.from_pages(FakePages([[]]))

        with pytest.raises(EndOfSequence) as exc_info:
            await iterator.next()

        assert not isinstance(exc_info.value, StorageError)


class TestFailures:
    """Test error propagation."""

    async def test_failure_is_sticky(self):
        """Test a failed fetch is reported on every later pull."""
        pages = FakePages([["a"], ["b"]])
        pages.fail_on_call = 2
        iterator = ListIterator.from_pages(pages)

        assert (await iterator.next()).key == "a"
        with pytest.raises(StorageBackendError) as first:
            await iterator.next()
        with pytest.raises(StorageBackendError) as second:
            await iterator.next()

        assert first.value is second.value
        assert iterator.state is IteratorState.FAILED
        assert len(pages.calls) == 2

    async def test_failure_is_not_end_of_sequence(self):
        """Test backend errors are distinguishable from exhaustion."""
        pages = FakePages([["a"]])
        pages.fail_on_call = 1
        iterator = ListIterator.from_pages(pages)

        with pytest.raises(StorageBackendError):
            await iterator.next()


class TestCancellation:
    """Test cancellation during a fetch."""

    async def test_cancelled_marker_fetch_is_resumable(self):
        """Test a cancelled page request is retried with the same marker."""
        pages = FakePages([["a"], ["b"]])
        iterator = ListIterator.from_pages(pages)
        assert (await iterator.next()).key == "a"

        pages.gate = asyncio.Event()
        task = asyncio.create_task(iterator.next())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        pages.gate = None
        assert (await iterator.next()).key == "b"
        assert pages.calls == [None, "1", "1"]

    async def test_cancelled_stream_fails_with_cancelled_error(self):
        """Test a cancelled stream pull leaves the iterator unusable."""
        gate = asyncio.Event()

        async def stream():
            yield ListObject(key="a")
            await gate.wait()
            yield ListObject(key="b")

        iterator = ListIterator.from_stream(stream())
        assert (await iterator.next()).key == "a"

        task = asyncio.create_task(iterator.next())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with pytest.raises(StorageCancelledError):
            await iterator.next()
        assert iterator.state is IteratorState.FAILED

    async def test_deadline_cancels_pull(self):
        """Test asyncio.timeout bounds a slow page request."""
        pages = FakePages([["a"]])
        pages.gate = asyncio.Event()
        iterator = ListIterator.from_pages(pages)

        with pytest.raises(TimeoutError):
            async with asyncio.timeout(0.01):
                await iterator.next()

        pages.gate = None
        assert (await iterator.next()).key == "a"


class TestStreamPagination:
    """Test stream-driven listing."""

    async def test_stream_is_drained_one_entry_per_pull(self):
        """Test entries come out in stream order."""
        pulled: list[str] = []

        async def stream():
            for key in ("a", "b", "c"):
                pulled.append(key)
                yield ListObject(key=key)

        iterator = ListIterator.from_stream(stream())

        assert (await iterator.next()).key == "a"
        assert pulled == ["a"]
        assert await _drain(iterator) == ["b", "c"]

    async def test_stream_error_is_sticky(self):
        """Test errors raised by the stream are reported on every pull."""

        async def stream():
            yield ListObject(key="a")
            raise StorageBackendError("SlowDown", backend_code="SlowDown")

        iterator = ListIterator.from_stream(stream())
        await iterator.next()

        for _ in range(2):
            with pytest.raises(StorageBackendError):
                await iterator.next()

    async def test_aclose_releases_stream(self):
        """Test closing the iterator closes the underlying generator."""
        closed = asyncio.Event()

        async def stream():
            try:
                yield ListObject(key="a")
                yield ListObject(key="b")
            finally:
                closed.set()

        iterator = ListIterator.from_stream(stream())
        await iterator.next()
        await iterator.aclose()

        assert closed.is_set()
        with pytest.raises(EndOfSequence):
            await iterator.next()


class TestMarkerPager:
    """Test the marker pager directly."""

    async def test_marker_advances_only_after_success(self):
        """Test the marker is unchanged when a fetch fails."""
        pages = FakePages([["a"], ["b"]])
        pager = MarkerPager(pages)

        await pager.next_batch()
        assert pager.marker == "1"

        pages.fail_on_call = 2
        with pytest.raises(StorageBackendError):
            await pager.next_batch()

        assert pager.marker == "1"
        assert pager.pages_fetched == 1
