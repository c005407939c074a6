"""
Process-wide engine, built lazily from settings.

The API process and each RQ worker get their own engine over the same
durable store; the in-process timer set is rebuilt by engine.recover().
"""
import threading
from typing import Optional

from escrow.core.engine import EscrowEngine
from escrow.core.scheduler import AutoReleaseScheduler
from escrow.events.dispatcher import build_dispatcher
from escrow.observability.logging import log
from escrow.rail.payment_rail import build_rail
from escrow.settings import settings
from escrow.store.contract_repo import build_store

_ENGINE: Optional[EscrowEngine] = None
_LOCK = threading.Lock()


def build_scheduler(backend: str = ""):
    backend = (backend or settings.SCHEDULER_BACKEND or "thread").lower()
    if backend == "rq":
        from escrow.queue.scheduler import RQAutoReleaseScheduler
        return RQAutoReleaseScheduler()
    return AutoReleaseScheduler(poll_interval_sec=settings.SCHEDULER_POLL_SEC)


def build_engine() -> EscrowEngine:
    engine = EscrowEngine(
        store=build_store(settings.STORE_BACKEND),
        rail=build_rail(settings.PAYMENT_RAIL_MODE),
        dispatcher=build_dispatcher(settings.EVENT_DISPATCH_MODE),
        scheduler=build_scheduler(settings.SCHEDULER_BACKEND),
        admin_ids=settings.admin_ids(),
        window_ms=settings.auto_release_window_ms(),
        cas_max_retries=settings.CAS_MAX_RETRIES,
    )
    log(
        event="engine_built",
        store=settings.STORE_BACKEND,
        scheduler=settings.SCHEDULER_BACKEND,
        rail=settings.PAYMENT_RAIL_MODE,
        dispatch=settings.EVENT_DISPATCH_MODE,
        admins=len(settings.admin_ids()),
    )
    return engine


def get_engine() -> EscrowEngine:
    global _ENGINE
    with _LOCK:
        if _ENGINE is None:
            _ENGINE = build_engine()
        return _ENGINE


def set_engine(engine: Optional[EscrowEngine]) -> None:
    """Swap the process engine (tests, embedding)."""
    global _ENGINE
    with _LOCK:
        _ENGINE = engine
