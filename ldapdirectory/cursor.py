"""
Streaming search results one page at a time.

A :py:class:`SearchCursor` runs a Simple Paged Results (RFC 2696) search and
hands back entries as an iterator, fetching the next page from the server only
when the entries it already has run out.  If you stop early, call
:py:meth:`SearchCursor.cleanup` (or use the cursor as a context manager) so the
server can drop its paging state:

.. code-block:: python

    with SearchCursor(session, request) as cursor:
        for entry in cursor:
            if entry.first_text("uid") == "fred":
                break
"""

import logging
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from .entries import DirectoryEntry, SearchRequest
from .exceptions import DirectoryError
from .session import DirectorySession

if TYPE_CHECKING:
    from .pool import ConnectionPool
    from .records import Materialized, Record

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


class SearchCursor:
    """
    A lazy iterator over the results of a paged search.

    Creating the cursor fetches the first page.  The cursor does not own
    ``session``; whoever leased it must keep the lease until the cursor is
    done with.

    Args:
        session: the session to search on
        request: what to search for

    Keyword Args:
        page_size: used when ``request.page_size`` is not set

    Raises:
        DirectoryConnectionError: the first page could not be fetched
        ProtocolError: the server rejected the search

    """

    def __init__(
        self,
        session: DirectorySession,
        request: SearchRequest,
        page_size: int | None = None,
    ) -> None:
        self.session = session
        self.request = request
        self.page_size = request.page_size or page_size or DEFAULT_PAGE_SIZE
        #: Round trips made so far
        self.pages_fetched = 0
        #: ``True`` once no more entries will be produced
        self.exhausted = False
        self._buffer: deque[DirectoryEntry] = deque()
        self._cookie: bytes | None = None
        self._fetch(b"")

    def _fetch(self, cookie: bytes) -> None:
        try:
            entries, next_cookie = self.session.search_page(
                self.request, self.page_size, cookie
            )
        except DirectoryError:
            self.exhausted = True
            self._cookie = None
            self._buffer.clear()
            raise
        self.pages_fetched += 1
        self._buffer.extend(entries)
        self._cookie = next_cookie
        logger.debug(
            "ldapdirectory.cursor.page base=%s page=%d entries=%d more=%s",
            self.request.base,
            self.pages_fetched,
            len(entries),
            next_cookie is not None,
        )

    @property
    def has_pending_page(self) -> bool:
        """``True`` while the server is holding paging state for us."""
        return self._cookie is not None

    def __iter__(self) -> Iterator[DirectoryEntry]:
        return self

    def __next__(self) -> DirectoryEntry:
        while not self._buffer:
            if self.exhausted or self._cookie is None:
                self.exhausted = True
                raise StopIteration
            self._fetch(self._cookie)
        return self._buffer.popleft()

    def cleanup(self) -> None:
        """
        Release the server's paging state if there are pages we never fetched.

        This sends a paged search with a page size of zero carrying the
        outstanding cookie.  Calling it more than once, after the cursor ran
        out, or after an error, does nothing.
        """
        cookie = self._cookie
        self._cookie = None
        self._buffer.clear()
        self.exhausted = True
        if cookie is None:
            return
        try:
            self.session.abandon_paged(self.request, cookie)
        except DirectoryError as e:
            logger.warning(
                "ldapdirectory.cursor.cleanup.failed base=%s error=%s",
                self.request.base,
                e,
            )
        else:
            logger.debug("ldapdirectory.cursor.cleanup base=%s", self.request.base)

    close = cleanup

    def __enter__(self) -> "SearchCursor":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.cleanup()

    def records(self, record_type: "type[Record]") -> Iterator["Materialized"]:
        """
        Materialize each entry as ``record_type``.

        Entries that don't fit ``record_type`` are not dropped; check
        :py:attr:`Materialized.errors` or call :py:meth:`Materialized.unwrap`.
        """
        for entry in self:
            yield record_type.from_entry(entry)


@contextmanager
def leased_cursor(
    pool: "ConnectionPool", request: SearchRequest, timeout: float | None = None
) -> Iterator[SearchCursor]:
    """
    Lease a session from ``pool`` and open a cursor on it.

    The lease is held until the ``with`` block exits, at which point the
    cursor is cleaned up and the session goes back to the pool.
    """
    with pool.acquire(timeout) as session:
        cursor = SearchCursor(session, request, page_size=pool.config.page_size)
        try:
            yield cursor
        finally:
            cursor.cleanup()
