"""
Webhook delivery for lifecycle events.

Each attempt POSTs the event once. Failures are retried with exponential
backoff and jitter by re-enqueueing the job; 4xx (except 429) is terminal,
and after EVENT_MAX_ATTEMPTS the event is parked on a dead-letter list.
"""
import json
import random
import time
from typing import Optional, Tuple

import httpx

from escrow.observability.logging import log
from escrow.settings import settings
from escrow.store.redis_conn import get_redis

DLQ_KEY = "escrow:events:dlq"


def _now_ms() -> int:
    return int(time.time() * 1000)


def calc_backoff(attempt: int) -> int:
    """Exponential backoff with jitter, in ms."""
    base = int(getattr(settings, "EVENT_BASE_DELAY_MS", 1000) or 1000)
    max_delay = int(getattr(settings, "EVENT_MAX_DELAY_MS", 3600000) or 3600000)
    delay = base * (2 ** (attempt - 1))
    jitter = delay * 0.1 * random.uniform(-1, 1)
    return min(max_delay, int(delay + jitter))


def post_event(payload: dict, timeout: float) -> Tuple[bool, int, Optional[str]]:
    """Returns (success, status_code, error). status_code is 0 on transport errors."""
    headers = {
        "Idempotency-Key": str(payload.get("event_id", "")),
        "Content-Type": "application/json",
    }
    try:
        with httpx.Client(timeout=timeout) as client:
            resp = client.post(settings.EVENT_WEBHOOK_URL, json=payload, headers=headers)
        if 200 <= resp.status_code < 300:
            return True, resp.status_code, None
        return False, resp.status_code, (resp.text or "")[:300]
    except httpx.HTTPError as e:
        return False, 0, f"{type(e).__name__}:{str(e)[:200]}"


def move_to_dlq(payload: dict, attempts: int, last_error: Optional[str]) -> None:
    r = get_redis()
    r.lpush(DLQ_KEY, json.dumps({
        "event": payload,
        "attempts": attempts,
        "lastError": last_error,
        "deadAt": _now_ms(),
    }))
    log(event="event_dlq_moved", level="warning", eventId=payload.get("event_id"), attempts=attempts)


def deliver(payload: dict, attempt: int = 1) -> Optional[int]:
    """
    Attempt one delivery. Returns None when finished (delivered, terminal or
    dead-lettered) or the backoff in ms before the next attempt.
    """
    if not settings.EVENT_WEBHOOK_URL:
        log(event="event_delivery_skipped_no_url", eventId=payload.get("event_id"))
        return None

    start = _now_ms()
    ok, code, err = post_event(payload, timeout=float(settings.EVENT_TIMEOUT_SEC))
    elapsed = _now_ms() - start

    if ok:
        log(event="event_delivered", eventId=payload.get("event_id"), attempt=attempt, elapsedMs=elapsed)
        return None

    if 400 <= code < 500 and code != 429:
        log(event="event_terminal_error", level="warning", eventId=payload.get("event_id"), code=code)
        return None

    max_attempts = int(getattr(settings, "EVENT_MAX_ATTEMPTS", 12) or 12)
    if attempt >= max_attempts:
        move_to_dlq(payload, attempt, err)
        return None

    backoff = calc_backoff(attempt)
    log(event="event_retry_scheduled", eventId=payload.get("event_id"), attempt=attempt,
        backoffMs=backoff, code=code, error=err)
    return backoff
