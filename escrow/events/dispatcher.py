"""
Event Dispatcher: fire-and-forget fan-out of lifecycle events to the
notification layer. The engine calls publish() only after a successful CAS
and never lets a publish failure reach the caller.
"""
from typing import List

from escrow.events import models as ev
from escrow.events.models import LifecycleEvent
from escrow.observability.logging import log
from escrow.settings import settings
from escrow.store.models import Contract


def recipients_for(event_type: str, contract: Contract) -> List[str]:
    """Funding notifies payees; every other lifecycle change notifies all parties."""
    if event_type == ev.FUNDED:
        return list(contract.parties[1:])
    if event_type == ev.CONFIRMED:
        return [contract.payer] if contract.payer else []
    return list(contract.parties)


def build_event(event_type: str, contract: Contract, *, actor_id=None, timestamp: int, **detail) -> LifecycleEvent:
    return LifecycleEvent(
        type=event_type,
        contract_id=contract.id,
        amount=str(contract.amount),
        currency=contract.currency,
        timestamp=int(timestamp),
        actor_id=actor_id,
        version=int(contract.version),
        recipients=recipients_for(event_type, contract),
        detail={k: v for k, v in detail.items() if v is not None},
    )


class LogDispatcher:
    def publish(self, event: LifecycleEvent) -> None:
        log(event="lifecycle_event", type=event.type, contractId=event.contract_id,
            actorId=event.actor_id or "", recipients=event.recipients, detail=event.detail)


class QueueDispatcher:
    """Hands each event to an RQ worker for webhook delivery."""

    def __init__(self, queue=None):
        self._queue = queue

    @property
    def queue(self):
        if self._queue is None:
            from escrow.queue.rq_conn import get_queue
            self._queue = get_queue()
        return self._queue

    def publish(self, event: LifecycleEvent) -> None:
        from escrow.queue.jobs import deliver_event_job

        job = self.queue.enqueue(deliver_event_job, event.to_dict(), 1)
        log(event="lifecycle_event_enqueued", type=event.type, contractId=event.contract_id,
            rq_job_id=getattr(job, "id", "") or "")


def build_dispatcher(mode: str = ""):
    mode = (mode or settings.EVENT_DISPATCH_MODE or "log").lower()
    if mode == "rq":
        return QueueDispatcher()
    return LogDispatcher()
