import threading
import time
from unittest.mock import MagicMock

from escrow.core.scheduler import AutoReleaseScheduler


class Clock:
    def __init__(self, now=1_000):
        self.now = now

    def __call__(self):
        return self.now


def test_run_due_fires_only_due_entries():
    clock = Clock()
    fire = MagicMock()
    s = AutoReleaseScheduler(fire, clock=clock)
    s.arm("a", 1_500)
    s.arm("b", 3_000)

    clock.now = 2_000
    assert s.run_due() == ["a"]
    fire.assert_called_once_with("a")
    assert s.pending() == {"b": 3_000}


def test_each_arm_fires_at_most_once():
    clock = Clock(5_000)
    fire = MagicMock()
    s = AutoReleaseScheduler(fire, clock=clock)
    s.arm("a", 1_000)
    s.run_due()
    s.run_due()
    assert fire.call_count == 1


def test_rearm_replaces_previous_deadline():
    clock = Clock()
    fire = MagicMock()
    s = AutoReleaseScheduler(fire, clock=clock)
    s.arm("a", 1_500)
    s.arm("a", 9_000)
    clock.now = 2_000
    assert s.run_due() == []
    assert s.deadline_for("a") == 9_000


def test_cancel_is_idempotent_and_prevents_firing():
    clock = Clock()
    fire = MagicMock()
    s = AutoReleaseScheduler(fire, clock=clock)
    s.arm("a", 1_500)
    assert s.cancel("a") is True
    assert s.cancel("a") is False
    assert s.cancel("never-armed") is False
    clock.now = 10_000
    assert s.run_due() == []
    fire.assert_not_called()


def test_cancel_after_fire_is_a_no_op():
    clock = Clock(5_000)
    s = AutoReleaseScheduler(MagicMock(), clock=clock)
    s.arm("a", 1_000)
    s.run_due()
    assert s.cancel("a") is False


def test_fire_errors_are_contained():
    clock = Clock(5_000)
    fire = MagicMock(side_effect=[RuntimeError("boom"), None])
    s = AutoReleaseScheduler(fire, clock=clock)
    s.arm("a", 1_000)
    s.arm("b", 2_000)
    assert s.run_due() == ["b"]
    assert fire.call_count == 2


def test_cancel_waits_for_in_flight_firing():
    clock = Clock(5_000)
    entered = threading.Event()
    release = threading.Event()
    finished = []

    def slow_fire(cid):
        entered.set()
        release.wait(timeout=5)
        finished.append(cid)

    s = AutoReleaseScheduler(slow_fire, clock=clock)
    s.arm("a", 1_000)
    worker = threading.Thread(target=s.run_due)
    worker.start()
    assert entered.wait(timeout=5)

    cancelled = []
    canceller = threading.Thread(target=lambda: cancelled.append(s.cancel("a")))
    canceller.start()
    time.sleep(0.1)
    # cancel() must still be blocked while the firing runs
    assert cancelled == []

    release.set()
    canceller.join(timeout=5)
    worker.join(timeout=5)
    assert finished == ["a"]
    assert cancelled == [False]


def test_cancel_drops_entry_rearmed_by_in_flight_firing():
    clock = Clock(5_000)
    entered = threading.Event()
    release = threading.Event()
    s = AutoReleaseScheduler(clock=clock)

    def rearming_fire(cid):
        entered.set()
        release.wait(timeout=5)
        # an early or contended firing puts the contract back on the timer
        s.arm(cid, 9_000)

    s.bind(rearming_fire)
    s.arm("c1", 1_000)
    worker = threading.Thread(target=s.run_due)
    worker.start()
    assert entered.wait(timeout=5)

    cancelled = []
    canceller = threading.Thread(target=lambda: cancelled.append(s.cancel("c1")))
    canceller.start()
    time.sleep(0.1)
    release.set()
    canceller.join(timeout=5)
    worker.join(timeout=5)

    assert cancelled == [True]
    assert s.is_armed("c1") is False
    assert s.pending() == {}
    clock.now = 10_000
    assert s.run_due() == []


def test_cancel_from_inside_firing_does_not_deadlock():
    clock = Clock(5_000)
    s = AutoReleaseScheduler(clock=clock)
    results = []
    s.bind(lambda cid: results.append(s.cancel(cid)))
    s.arm("a", 1_000)
    assert s.run_due() == ["a"]
    assert results == [False]


def test_background_thread_fires_and_stops():
    fired = threading.Event()
    s = AutoReleaseScheduler(lambda cid: fired.set(), poll_interval_sec=0.05)
    s.start()
    try:
        s.arm("a", int(time.time() * 1000) + 50)
        assert fired.wait(timeout=5)
    finally:
        s.stop()
    assert s.pending() == {}
