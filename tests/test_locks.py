"""Tests for the per-key lock registry."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

from groupsettle.ledger.locks import KeyedLock


class TestKeyedLock:
    """Tests for KeyedLock."""

    def test_same_key_is_serialized(self):
        """At most one thread is ever inside the block for a given key."""
        locks = KeyedLock()
        inside = 0
        max_inside = 0
        counter_lock = threading.Lock()

        def work():
            nonlocal inside, max_inside
            with locks.hold("group-1"):
                with counter_lock:
                    inside += 1
                    max_inside = max(max_inside, inside)
                time.sleep(0.005)
                with counter_lock:
                    inside -= 1

        with ThreadPoolExecutor(max_workers=8) as pool:
            for future in [pool.submit(work) for _ in range(16)]:
                future.result()

        assert max_inside == 1

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        entered_other = threading.Event()

        with locks.hold(1):
            thread = threading.Thread(
                target=lambda: _hold_and_signal(locks, 2, entered_other)
            )
            thread.start()
            assert entered_other.wait(timeout=2)
            thread.join()

    def test_entries_released_after_use(self):
        """No entry is kept once nothing holds or waits on a key."""
        locks = KeyedLock()

        with locks.hold("a"):
            assert "a" in locks
            assert len(locks) == 1

        assert "a" not in locks
        assert len(locks) == 0

    def test_entries_released_after_exception(self):
        locks = KeyedLock()

        try:
            with locks.hold("a"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert len(locks) == 0
        with locks.hold("a"):
            pass

    def test_no_entries_left_after_contention(self):
        locks = KeyedLock()

        def work(key):
            with locks.hold(key):
                time.sleep(0.001)

        with ThreadPoolExecutor(max_workers=6) as pool:
            list(pool.map(work, [i % 3 for i in range(30)]))

        assert len(locks) == 0


def _hold_and_signal(locks: KeyedLock, key, event: threading.Event):
    with locks.hold(key):
        event.set()
