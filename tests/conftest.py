import pytest

from escrow.core.engine import EscrowEngine
from escrow.core.scheduler import AutoReleaseScheduler
from escrow.settings import settings
from escrow.store.contract_repo import MemoryLedgerStore

HOUR_MS = 3600 * 1000
T0 = 1_767_225_600_000  # 2026-01-01T00:00:00Z


class FakeClock:
    def __init__(self, start: int = T0):
        self.now = int(start)

    def __call__(self) -> int:
        return self.now

    def advance(self, hours: float = 0, ms: int = 0) -> int:
        self.now += int(hours * HOUR_MS) + int(ms)
        return self.now


class FakeRail:
    def __init__(self):
        self.calls = []
        self.fail = None

    def fund(self, contract_id, amount, currency, contract_hash=""):
        self.calls.append((contract_id, amount, currency))
        if self.fail is not None:
            raise self.fail
        return f"tx_{len(self.calls)}_{contract_id[-6:]}"


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    def types(self):
        return [e.type for e in self.events]


@pytest.fixture(autouse=True)
def _no_metrics(monkeypatch):
    monkeypatch.setattr(settings, "METRICS_ENABLED", False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rail():
    return FakeRail()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def store():
    return MemoryLedgerStore()


@pytest.fixture
def scheduler(clock):
    return AutoReleaseScheduler(clock=clock, poll_interval_sec=0.05)


@pytest.fixture
def engine(store, rail, dispatcher, scheduler, clock):
    return EscrowEngine(
        store=store,
        rail=rail,
        dispatcher=dispatcher,
        scheduler=scheduler,
        clock=clock,
        admin_ids={"admin-1"},
        window_ms=72 * HOUR_MS,
        cas_max_retries=8,
    )
