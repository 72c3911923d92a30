"""Lazy, single-pass listing iterator.

Backends differ in how they paginate:

- Marker-driven backends (S3 ``ContinuationToken``, Azure ``NextMarker``)
  return one page per request plus a cursor for the next one.
- Stream-driven backends (the MinIO paginator stream) hand out an already
  open async stream of entries.

``ListIterator`` owns the pull protocol and the state machine; a backend only
supplies a pager. Marker-driven backends implement a single coroutine,
"fetch the page for this marker", and never touch the queue or the
end-of-sequence logic.

Example:
    async def fetch_page(marker: str | None) -> ListPage:
        response = await client.list_objects_v2(..., ContinuationToken=marker)
        return ListPage(objects=[...], next_marker=response.get("NextContinuationToken"))

    iterator = ListIterator(MarkerPager(fetch_page))
    async for entry in iterator:
        print(entry.key)
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import TYPE_CHECKING, Protocol

from common_blob.infra.storage.exceptions import EndOfSequence, StorageCancelledError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from .protocol import ListObject

logger = logging.getLogger(__name__)


class IteratorState(StrEnum):
    """Lifecycle of a listing pass."""

    FETCHING = "fetching"
    BUFFERED = "buffered"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(frozen=True)
class ListPage:
    """One backend response page.

    Attributes:
        objects: Entries in the order the backend returned them
        next_marker: Continuation marker, or None when no page follows
    """

    objects: list[ListObject] = field(default_factory=list)
    next_marker: str | None = None


class Pager(Protocol):
    """Strategy producing batches of entries for a ``ListIterator``."""

    @property
    def done(self) -> bool:
        """True once the source can produce no further entries."""
        ...

    @property
    def resumable(self) -> bool:
        """True if a cancelled fetch can be retried without losing entries."""
        ...

    async def next_batch(self) -> list[ListObject]:
        """Fetch the next batch; may be empty while ``done`` is still False."""
        ...


class MarkerPager:
    """Pager for marker/continuation-token backends.

    Each call issues exactly one page request with the stored marker. The
    marker only advances after the request succeeded, so a cancelled or
    failed fetch never skips a page.
    """

    def __init__(self, fetch_page: Callable[[str | None], Awaitable[ListPage]]) -> None:
        self._fetch_page = fetch_page
        self._marker: str | None = None
        self._done = False
        self.pages_fetched = 0

    @property
    def done(self) -> bool:
        return self._done

    @property
    def resumable(self) -> bool:
        return True

    @property
    def marker(self) -> str | None:
        """Marker the next request will be issued with."""
        return self._marker

    async def next_batch(self) -> list[ListObject]:
        page = await self._fetch_page(self._marker)
        self.pages_fetched += 1
        self._marker = page.next_marker or None
        self._done = self._marker is None
        return list(page.objects)


class StreamPager:
    """Pager draining an already-open async stream one entry at a time."""

    def __init__(self, source: AsyncIterator[ListObject]) -> None:
        self._source = source
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def resumable(self) -> bool:
        return False

    async def next_batch(self) -> list[ListObject]:
        try:
            entry = await anext(self._source)
        except StopAsyncIteration:
            self._done = True
            return []
        return [entry]

    async def aclose(self) -> None:
        """Close the underlying stream if it supports it."""
        self._done = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()


class ListIterator:
    """Pull-based, single-pass sequence of ``ListObject`` entries.

    ``await next()`` returns the next entry or raises ``EndOfSequence``. The
    iterator is also an async iterator, so ``async for`` works directly.

    State machine:
        BUFFERED  -> entries are queued; ``next()`` pops without I/O
        FETCHING  -> queue empty, a backend request is in flight
        EXHAUSTED -> the source reported no more entries and the queue is empty
        FAILED    -> a fetch raised; the same error is raised on every later pull

    A single instance must be driven by one consumer at a time.
    """

    def __init__(self, pager: Pager, *, description: str = "") -> None:
        self._pager = pager
        self._queue: deque[ListObject] = deque()
        self._state = IteratorState.BUFFERED
        self._error: BaseException | None = None
        self._description = description
        self._closed = False
        self.yielded = 0

    @classmethod
    def from_pages(
        cls,
        fetch_page: Callable[[str | None], Awaitable[ListPage]],
        *,
        description: str = "",
    ) -> ListIterator:
        """Build an iterator over a marker-driven page fetcher."""
        return cls(MarkerPager(fetch_page), description=description)

    @classmethod
    def from_stream(
        cls,
        source: AsyncIterator[ListObject],
        *,
        description: str = "",
    ) -> ListIterator:
        """Build an iterator draining an already-open entry stream."""
        return cls(StreamPager(source), description=description)

    @property
    def state(self) -> IteratorState:
        """Current state of the pass."""
        return self._state

    async def next(self) -> ListObject:
        """Return the next entry of the pass.

        Raises:
            EndOfSequence: When the pass is exhausted
            asyncio.CancelledError: If the calling task is cancelled mid-fetch
            StorageError: If the backend failed while fetching a page
        """
        while True:
            # set together with the FAILED state
            if self._error is not None:
                raise self._error

            if self._queue:
                self._state = IteratorState.BUFFERED
                self.yielded += 1
                return self._queue.popleft()

            if self._pager.done or self._closed:
                if self._state is not IteratorState.EXHAUSTED:
                    logger.debug(
                        "Listing exhausted",
                        extra={"listing": self._description, "yielded": self.yielded},
                    )
                self._state = IteratorState.EXHAUSTED
                raise EndOfSequence

            self._state = IteratorState.FETCHING
            try:
                batch = await self._pager.next_batch()
            except asyncio.CancelledError:
                if self._pager.resumable:
                    self._state = IteratorState.BUFFERED
                else:
                    self._fail(StorageCancelledError(metadata={"listing": self._description}))
                raise
            except Exception as e:
                self._fail(e)
                raise
            self._queue.extend(batch)

    def _fail(self, error: BaseException) -> None:
        logger.debug(
            "Listing failed",
            extra={"listing": self._description, "error": str(error)},
        )
        self._state = IteratorState.FAILED
        self._error = error
        self._queue.clear()

    async def aclose(self) -> None:
        """Abandon the pass and release the underlying stream, if any."""
        if isinstance(self._pager, StreamPager):
            await self._pager.aclose()
        self._closed = True
        self._queue.clear()
        if self._state is not IteratorState.FAILED:
            self._state = IteratorState.EXHAUSTED

    def __aiter__(self) -> ListIterator:
        return self

    async def __anext__(self) -> ListObject:
        return await self.next()
