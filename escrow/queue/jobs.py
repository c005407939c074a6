from datetime import timedelta

from escrow.events.delivery import deliver
from escrow.observability.logging import log


def auto_release_job(contract_id: str) -> str:
    """
    Scheduled RQ job: fire the auto-release for one contract.
    Losing a race with a confirmation or dispute is an expected outcome.
    """
    from escrow.core.runtime import get_engine

    log(event="auto_release_job_start", contractId=contract_id)
    return get_engine().fire_auto_release(contract_id)


def deliver_event_job(payload: dict, attempt: int = 1) -> None:
    """Deliver one lifecycle event; reschedules itself while retries remain."""
    try:
        backoff_ms = deliver(payload, attempt)
    except Exception as e:
        log(event="event_job_exception", level="error", eventId=payload.get("event_id"), error=str(e))
        raise
    if backoff_ms is None:
        return
    from escrow.queue.rq_conn import get_queue

    get_queue().enqueue_in(timedelta(milliseconds=backoff_ms), deliver_event_job, payload, attempt + 1)
