"""
Escrow counters and a snapshot for /admin/metrics.

Counters live in Redis so every API process and worker adds to the same
numbers. Recording is best-effort: a metrics failure is logged and never
affects a transition.
"""
from __future__ import annotations
import time
from typing import List

from escrow.observability.logging import log
from escrow.settings import settings
from escrow.store.redis_conn import get_redis

K_PREFIX = "metrics:escrow:"
K_LAT = "metrics:escrow:transition_latencies"     # LPUSH ms

COUNTERS = (
    "funded",
    "funding_failed",
    "confirmations",
    "released:confirmed",
    "released:auto_release",
    "released:admin_release",
    "refunded:admin_refund",
    "disputed",
    "cas_conflicts",
    "auto_release_discarded",
    "admin_rejected",
)

_MAX_SAMPLES = 500


def _percentile(data: List[float], p: float) -> float:
    """Deterministic percentile (nearest-rank on sorted data)."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])


def increment(name: str, by: int = 1) -> None:
    if not settings.METRICS_ENABLED:
        return
    try:
        get_redis().incr(f"{K_PREFIX}{name}", by)
    except Exception as e:
        log(event="metrics_write_failed", level="warning", metric=name, error=str(e)[:200])


def record_transition_latency(ms: int) -> None:
    if not settings.METRICS_ENABLED:
        return
    try:
        r = get_redis()
        r.lpush(K_LAT, int(ms))
        r.ltrim(K_LAT, 0, _MAX_SAMPLES - 1)
    except Exception as e:
        log(event="metrics_write_failed", level="warning", metric="latency", error=str(e)[:200])


def get_metrics_snapshot(store=None) -> dict:
    r = get_redis()
    counters = {name: int(r.get(f"{K_PREFIX}{name}") or 0) for name in COUNTERS}

    lat: List[float] = []
    for x in r.lrange(K_LAT, 0, _MAX_SAMPLES - 1) or []:
        try:
            lat.append(float(x))
        except (TypeError, ValueError):
            continue

    by_status = {}
    if store is not None:
        from escrow.store.models import ESCROW_STATUSES
        by_status = {s: int(store.count_by_status(s)) for s in ESCROW_STATUSES}

    return {
        "counters": counters,
        "p50_transition_latency_ms": round(_percentile(lat, 0.50), 3),
        "p95_transition_latency_ms": round(_percentile(lat, 0.95), 3),
        "contracts_by_status": by_status,
        "snapshot_at": int(time.time()),
    }
