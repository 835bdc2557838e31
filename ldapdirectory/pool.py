"""
A bounded pool of directory sessions.

Threads borrow sessions with :py:meth:`ConnectionPool.acquire`, which returns a
:py:class:`Lease`.  Use the lease as a context manager and the session goes
back to the pool when the block exits, however it exits:

.. code-block:: python

    pool = ConnectionPool(DirectoryConfig.from_settings())
    with pool.acquire() as session:
        session.delete("uid=fred,ou=people,dc=example,dc=com")

The pool never has more than ``config.pool_size`` sessions open.  When all of
them are leased, :py:meth:`ConnectionPool.acquire` waits, and waiting threads
are served in arrival order.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from .config import DirectoryConfig
from .exceptions import PoolClosed, PoolError, PoolExhausted
from .session import DirectorySession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[DirectoryConfig], DirectorySession]


@dataclass(frozen=True)
class PoolStats:
    size: int
    total: int
    idle: int
    leased: int
    closed: bool


class _Waiter:
    """One thread blocked in :py:meth:`ConnectionPool.acquire`."""

    def __init__(self) -> None:
        self.event = threading.Event()
        #: Set when we are handed either a session or permission to open one
        self.granted = False
        #: The handed-over session; ``None`` with ``granted`` means "open one"
        self.session: DirectorySession | None = None
        self.pool_closed = False

    def grant(self, session: DirectorySession | None) -> None:
        self.granted = True
        self.session = session
        self.event.set()

    def fail(self) -> None:
        self.pool_closed = True
        self.event.set()


class Lease:
    """
    Exclusive use of one pooled session until :py:meth:`release`.

    Entering the lease as a context manager returns the session; leaving it
    releases the lease.  Releasing more than once does nothing.
    """

    def __init__(self, pool: "ConnectionPool", session: DirectorySession) -> None:
        self.pool = pool
        self._session = session
        self.released = False

    @property
    def session(self) -> DirectorySession:
        if self.released:
            msg = "This lease has already been released"
            raise PoolError(msg)
        return self._session

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self.pool._release(self._session)

    def __enter__(self) -> DirectorySession:
        return self.session

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"<Lease {self._session!r} released={self.released}>"


class ConnectionPool:
    """
    A bounded, thread-safe pool of :py:class:`DirectorySession` objects.

    Args:
        config: the server to connect to and the pool limits

    Keyword Args:
        session_factory: a callable that takes ``config`` and returns a new
            bound session; defaults to :py:meth:`DirectorySession.open`

    """

    def __init__(
        self,
        config: DirectoryConfig,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.config = config
        self.session_factory: SessionFactory = session_factory or DirectorySession.open
        self._lock = threading.Lock()
        # Most recently returned session on the right
        self._idle: deque[DirectorySession] = deque()
        self._waiters: deque[_Waiter] = deque()
        # Capacity slots in use: idle sessions, leased sessions and sessions
        # being opened
        self._total = 0
        self._closed = False

    # -----------------------
    # Statistics
    # -----------------------

    @property
    def size(self) -> int:
        return self.config.pool_size

    @property
    def total(self) -> int:
        return self._total

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def leased_count(self) -> int:
        with self._lock:
            return self._total - len(self._idle)

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> PoolStats:
        with self._lock:
            return PoolStats(
                size=self.size,
                total=self._total,
                idle=len(self._idle),
                leased=self._total - len(self._idle),
                closed=self._closed,
            )

    def __repr__(self) -> str:
        return (
            f"<ConnectionPool {self.config.url} size={self.size} total={self._total} "
            f"idle={len(self._idle)} closed={self._closed}>"
        )

    # -----------------------
    # Bookkeeping, all called with self._lock held
    # -----------------------

    def _hand_off(self, session: DirectorySession) -> None:
        if self._waiters:
            self._waiters.popleft().grant(session)
        else:
            self._idle.append(session)

    def _free_slot(self) -> None:
        self._total -= 1
        if self._waiters and not self._closed:
            # Let the oldest waiter open a session in the slot we just freed
            self._total += 1
            self._waiters.popleft().grant(None)

    # -----------------------
    # Public API
    # -----------------------

    def _checkout(self, timeout: float | None) -> DirectorySession | None:
        """
        Claim a capacity slot, waiting if need be.

        Returns:
            An idle session to validate, or ``None`` if the caller should open
            a new session in the claimed slot.

        """
        with self._lock:
            if self._closed:
                msg = "The connection pool has been shut down"
                raise PoolClosed(msg)
            if not self._waiters:
                if self._idle:
                    return self._idle.pop()
                if self._total < self.size:
                    self._total += 1
                    return None
            waiter = _Waiter()
            self._waiters.append(waiter)
            logger.debug("ldapdirectory.pool.acquire.wait waiters=%d", len(self._waiters))
        start = time.monotonic()
        signalled = waiter.event.wait(timeout)
        with self._lock:
            if waiter.pool_closed:
                msg = "The connection pool was shut down while waiting for a session"
                raise PoolClosed(msg)
            if signalled and waiter.granted:
                return waiter.session
            if waiter.granted:
                # Handed a slot just as we gave up; pass it on
                if waiter.session is not None:
                    self._hand_off(waiter.session)
                else:
                    self._free_slot()
            else:
                self._waiters.remove(waiter)
        waited = time.monotonic() - start
        logger.warning("ldapdirectory.pool.acquire.timeout waited=%.2f", waited)
        msg = f"Timed out after {waited:.2f}s waiting for a directory session"
        raise PoolExhausted(msg)

    def _return_slot(self) -> None:
        with self._lock:
            self._free_slot()

    def _open(self) -> DirectorySession:
        try:
            session = self.session_factory(self.config)
        except BaseException:
            self._return_slot()
            raise
        logger.debug("ldapdirectory.pool.open url=%s", self.config.url)
        return session

    def acquire(self, timeout: float | None = None) -> Lease:
        """
        Lease a live session.

        Idle sessions are checked with a "Who am I?" round trip before being
        handed out; a session that fails the check is closed and replaced, up
        to ``config.validation_retries`` times.

        Keyword Args:
            timeout: seconds to wait for a session; defaults to
                ``config.acquire_timeout``, and ``None`` there means wait forever

        Raises:
            PoolClosed: the pool has been shut down
            PoolExhausted: we timed out, or ran out of validation retries
            DirectoryConnectionError: opening a new session failed

        Returns:
            A :py:class:`Lease` on a session.

        """
        if timeout is None:
            timeout = self.config.acquire_timeout
        session = self._checkout(timeout)
        failures = 0
        while session is not None and not session.is_alive():
            session.close()
            failures += 1
            logger.warning(
                "ldapdirectory.pool.validate.failed attempt=%d retries=%d",
                failures,
                self.config.validation_retries,
            )
            if failures > self.config.validation_retries:
                self._return_slot()
                msg = (
                    f"Could not get a live directory session after {failures} "
                    "failed validations"
                )
                raise PoolExhausted(msg)
            with self._lock:
                # Try another idle session before opening a new one; it
                # brings its own slot, so give back the dead session's
                if self._idle:
                    session = self._idle.pop()
                    self._free_slot()
                else:
                    session = None
        if session is None:
            session = self._open()
        return Lease(self, session)

    def release(self, lease: Lease) -> None:
        """
        Give back the session held by ``lease``.  Same as ``lease.release()``.
        """
        if lease.pool is not self:
            msg = "That lease belongs to a different pool"
            raise PoolError(msg)
        lease.release()

    def _release(self, session: DirectorySession) -> None:
        with self._lock:
            discard = self._closed or session.closed or not session.healthy
            if discard:
                self._free_slot()
            else:
                self._hand_off(session)
        if discard:
            session.close()
            logger.debug("ldapdirectory.pool.release.discard session=%r", session)

    def prewarm(self, count: int | None = None) -> int:
        """
        Open up to ``count`` sessions ahead of time and leave them idle.

        Keyword Args:
            count: how many to open; defaults to filling the pool

        Returns:
            The number of sessions opened.

        """
        if count is None:
            count = self.size
        with self._lock:
            if self._closed:
                msg = "The connection pool has been shut down"
                raise PoolClosed(msg)
            count = max(0, min(count, self.size - self._total))
            self._total += count
        opened = 0
        try:
            for _ in range(count):
                session = self.session_factory(self.config)
                opened += 1
                self._release(session)
        finally:
            with self._lock:
                for _ in range(count - opened):
                    self._free_slot()
        logger.debug("ldapdirectory.pool.prewarm opened=%d", opened)
        return opened

    def shutdown(self) -> None:
        """
        Close the pool.

        Idle sessions are closed now; leased sessions are closed when their
        leases are released.  Threads waiting in :py:meth:`acquire` and any
        later callers get :py:class:`~ldapdirectory.exceptions.PoolClosed`.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._total -= len(idle)
            waiters = list(self._waiters)
            self._waiters.clear()
        for waiter in waiters:
            waiter.fail()
        for session in idle:
            session.close()
        logger.debug(
            "ldapdirectory.pool.shutdown closed_idle=%d failed_waiters=%d",
            len(idle),
            len(waiters),
        )
