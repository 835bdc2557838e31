# type: ignore
import threading
import time
import unittest
from unittest.mock import patch

from ldapdirectory.config import DirectoryConfig
from ldapdirectory.exceptions import (
    DirectoryConnectionError,
    PoolClosed,
    PoolError,
    PoolExhausted,
)
from ldapdirectory.pool import ConnectionPool, PoolStats, _Waiter


class FakeSession:

    def __init__(self, number):
        self.number = number
        self.alive = True
        self.healthy = True
        self.closed = False

    def is_alive(self):
        return self.alive and self.healthy and not self.closed

    def close(self):
        self.closed = True

    def __repr__(self):
        return f"<FakeSession {self.number}>"


class SessionFactory:

    def __init__(self):
        self.lock = threading.Lock()
        self.sessions = []

    def __call__(self, config):
        with self.lock:
            session = FakeSession(len(self.sessions))
            self.sessions.append(session)
            return session


def make_config(**kwargs):
    kwargs.setdefault("pool_size", 3)
    return DirectoryConfig("ldap://localhost", "cn=admin,dc=example,dc=com", "admin", **kwargs)


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition never became true")
        time.sleep(0.005)


class PoolTestCase(unittest.TestCase):

    pool_kwargs = {}

    def setUp(self):
        self.factory = SessionFactory()
        self.pool = ConnectionPool(make_config(**self.pool_kwargs), session_factory=self.factory)

    def tearDown(self):
        self.pool.shutdown()


class TestAcquireRelease(PoolTestCase):

    def test_opens_lazily(self):
        self.assertEqual(self.pool.total, 0)
        with self.pool.acquire() as session:
            self.assertIsInstance(session, FakeSession)
            self.assertEqual(self.pool.leased_count, 1)
        self.assertEqual(self.pool.total, 1)
        self.assertEqual(self.pool.idle_count, 1)

    def test_reuses_idle_session(self):
        with self.pool.acquire() as first:
            pass
        with self.pool.acquire() as second:
            pass
        self.assertIs(first, second)
        self.assertEqual(len(self.factory.sessions), 1)

    def test_release_is_idempotent(self):
        lease = self.pool.acquire()
        lease.release()
        lease.release()
        self.assertEqual(self.pool.idle_count, 1)
        self.assertEqual(self.pool.total, 1)

    def test_pool_release(self):
        lease = self.pool.acquire()
        self.pool.release(lease)
        self.assertTrue(lease.released)
        self.assertEqual(self.pool.idle_count, 1)
        other = ConnectionPool(make_config(), session_factory=self.factory)
        with self.assertRaises(PoolError):
            other.release(self.pool.acquire())

    def test_lease_session_after_release(self):
        lease = self.pool.acquire()
        lease.release()
        with self.assertRaises(PoolError):
            lease.session

    def test_stats(self):
        lease = self.pool.acquire()
        with self.pool.acquire():
            pass
        self.assertEqual(
            self.pool.stats(), PoolStats(size=3, total=2, idle=1, leased=1, closed=False)
        )
        lease.release()

    def test_factory_failure_returns_the_slot(self):
        def broken(config):
            raise DirectoryConnectionError("no route to host")

        pool = ConnectionPool(make_config(pool_size=1), session_factory=broken)
        with self.assertRaises(DirectoryConnectionError):
            pool.acquire()
        self.assertEqual(pool.total, 0)


class TestCapacity(PoolTestCase):

    def test_never_more_than_pool_size_leased(self):
        lock = threading.Lock()
        active = 0
        peak = 0
        errors = []

        def worker():
            nonlocal active, peak
            try:
                with self.pool.acquire(timeout=10):
                    with lock:
                        active += 1
                        peak = max(peak, active)
                    time.sleep(0.01)
                    with lock:
                        active -= 1
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(errors, [])
        self.assertLessEqual(peak, 3)
        self.assertLessEqual(len(self.factory.sessions), 3)
        self.assertLessEqual(self.pool.total, 3)
        self.assertEqual(self.pool.leased_count, 0)


class TestWaiting(PoolTestCase):

    pool_kwargs = {"pool_size": 1}

    def test_waiter_gets_released_session(self):
        lease = self.pool.acquire()
        got = []

        def waiter():
            with self.pool.acquire(timeout=5) as session:
                got.append(session)

        thread = threading.Thread(target=waiter)
        thread.start()
        wait_for(lambda: len(self.pool._waiters) == 1)
        held = lease.session
        lease.release()
        thread.join()
        self.assertEqual(got, [held])
        self.assertEqual(len(self.factory.sessions), 1)

    def test_waiters_are_served_in_order(self):
        lease = self.pool.acquire()
        order = []

        def waiter(name):
            with self.pool.acquire(timeout=5):
                order.append(name)

        threads = []
        for name in ("first", "second", "third"):
            thread = threading.Thread(target=waiter, args=(name,))
            thread.start()
            threads.append(thread)
            count = len(threads)
            wait_for(lambda count=count: len(self.pool._waiters) == count)
        lease.release()
        for thread in threads:
            thread.join()
        self.assertEqual(order, ["first", "second", "third"])

    def test_timeout(self):
        lease = self.pool.acquire()
        start = time.monotonic()
        with self.assertRaises(PoolExhausted):
            self.pool.acquire(timeout=0.05)
        self.assertGreaterEqual(time.monotonic() - start, 0.04)
        self.assertEqual(len(self.pool._waiters), 0)
        lease.release()
        # The pool still works after a timeout
        with self.pool.acquire(timeout=0.05):
            pass


class LateGrantWaiter(_Waiter):
    """
    A waiter whose wait times out, but only after ``before_timeout`` has run.

    ``before_timeout`` releases a lease, so the pool grants this waiter just as
    it gives up.
    """

    before_timeout = None

    def __init__(self):
        super().__init__()
        self.event.wait = self.late_wait

    def late_wait(self, timeout=None):
        type(self).before_timeout()
        return False


class TestGrantAtTimeout(PoolTestCase):

    pool_kwargs = {"pool_size": 1}

    def acquire_while_releasing(self, lease):
        LateGrantWaiter.before_timeout = lease.release
        try:
            with patch("ldapdirectory.pool._Waiter", LateGrantWaiter):
                with self.assertRaises(PoolExhausted):
                    self.pool.acquire(timeout=0.05)
        finally:
            LateGrantWaiter.before_timeout = None

    def test_handed_over_session_goes_back_to_the_pool(self):
        lease = self.pool.acquire()
        session = lease.session
        self.acquire_while_releasing(lease)
        self.assertEqual(len(self.pool._waiters), 0)
        self.assertEqual(self.pool.total, 1)
        self.assertEqual(self.pool.idle_count, 1)
        self.assertEqual(self.pool.leased_count, 0)
        with self.pool.acquire(timeout=0.05) as again:
            self.assertIs(again, session)
        self.assertEqual(len(self.factory.sessions), 1)

    def test_handed_over_slot_is_freed(self):
        lease = self.pool.acquire()
        session = lease.session
        # An unhealthy session is discarded, so the waiter is granted its slot
        session.healthy = False
        self.acquire_while_releasing(lease)
        self.assertTrue(session.closed)
        self.assertEqual(len(self.pool._waiters), 0)
        self.assertEqual(self.pool.total, 0)
        self.assertEqual(self.pool.idle_count, 0)
        with self.pool.acquire(timeout=0.05) as fresh:
            self.assertIsNot(fresh, session)
        self.assertEqual(self.pool.total, 1)


class TestDefaultTimeout(PoolTestCase):

    pool_kwargs = {"pool_size": 1, "acquire_timeout": 0.05}

    def test_uses_configured_timeout(self):
        lease = self.pool.acquire()
        with self.assertRaises(PoolExhausted):
            self.pool.acquire()
        lease.release()


class TestValidation(PoolTestCase):

    def test_dead_idle_session_is_replaced(self):
        with self.pool.acquire() as first:
            pass
        first.alive = False
        with self.pool.acquire() as second:
            self.assertIsNot(second, first)
        self.assertTrue(first.closed)
        self.assertEqual(len(self.factory.sessions), 2)
        self.assertEqual(self.pool.total, 1)

    def test_unhealthy_session_is_discarded_on_release(self):
        lease = self.pool.acquire()
        session = lease.session
        session.healthy = False
        lease.release()
        self.assertTrue(session.closed)
        self.assertEqual(self.pool.total, 0)
        self.assertEqual(self.pool.idle_count, 0)


class TestValidationRetries(PoolTestCase):

    pool_kwargs = {"pool_size": 2, "validation_retries": 1}

    def test_gives_up_after_retries(self):
        self.assertEqual(self.pool.prewarm(), 2)
        for session in self.factory.sessions:
            session.alive = False
        with self.assertRaises(PoolExhausted):
            self.pool.acquire()
        self.assertTrue(all(s.closed for s in self.factory.sessions))
        # Every slot the failed acquire held has been given back
        self.assertEqual(self.pool.total, 0)
        with self.pool.acquire() as session:
            self.assertTrue(session.is_alive())


class TestPrewarm(PoolTestCase):

    def test_fills_pool(self):
        self.assertEqual(self.pool.prewarm(), 3)
        self.assertEqual(self.pool.idle_count, 3)
        self.assertEqual(self.pool.prewarm(), 0)
        self.assertEqual(len(self.factory.sessions), 3)

    def test_partial(self):
        self.assertEqual(self.pool.prewarm(2), 2)
        self.assertEqual(self.pool.total, 2)


class TestShutdown(PoolTestCase):

    pool_kwargs = {"pool_size": 1}

    def test_closes_idle_sessions(self):
        self.pool.prewarm()
        session = self.factory.sessions[0]
        self.pool.shutdown()
        self.assertTrue(session.closed)
        self.assertTrue(self.pool.closed)
        self.assertEqual(self.pool.total, 0)

    def test_acquire_after_shutdown(self):
        self.pool.shutdown()
        with self.assertRaises(PoolClosed):
            self.pool.acquire()
        with self.assertRaises(PoolClosed):
            self.pool.prewarm()

    def test_waiters_are_failed(self):
        lease = self.pool.acquire()
        errors = []

        def waiter():
            try:
                self.pool.acquire(timeout=5)
            except PoolClosed as e:
                errors.append(e)

        thread = threading.Thread(target=waiter)
        thread.start()
        wait_for(lambda: len(self.pool._waiters) == 1)
        self.pool.shutdown()
        thread.join()
        self.assertEqual(len(errors), 1)
        # The leased session is closed when it comes back
        session = lease.session
        self.assertFalse(session.closed)
        lease.release()
        self.assertTrue(session.closed)
        self.assertEqual(self.pool.total, 0)

    def test_shutdown_is_idempotent(self):
        self.pool.shutdown()
        self.pool.shutdown()
        self.assertTrue(self.pool.closed)
