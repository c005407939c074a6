"""
RQ-backed Auto-Release Scheduler.

Same interface as escrow.core.scheduler.AutoReleaseScheduler, but the timer
lives in Redis as a scheduled RQ job (`rq worker --with-scheduler` moves it
onto the queue at the deadline), so it survives process restarts. A job that
already started when cancel() runs is harmless: the firing re-checks state
through CAS and is discarded once the contract has left `locked`.
"""
from typing import Callable, Optional

from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from escrow.observability.logging import log
from escrow.queue.rq_conn import get_queue
from escrow.utils.time import to_datetime

JOB_PREFIX = "auto-release:"


def job_id_for(contract_id: str) -> str:
    return f"{JOB_PREFIX}{contract_id}"


class RQAutoReleaseScheduler:
    def __init__(self, queue: Optional[Queue] = None):
        self._queue = queue

    @property
    def queue(self) -> Queue:
        if self._queue is None:
            self._queue = get_queue()
        return self._queue

    def bind(self, fire: Callable[[str], object]) -> None:
        # Firing happens in the worker via escrow.queue.jobs.auto_release_job
        return None

    def arm(self, contract_id: str, deadline_ms: int) -> None:
        from escrow.queue.jobs import auto_release_job

        self.cancel(contract_id)
        job = self.queue.enqueue_at(
            to_datetime(deadline_ms),
            auto_release_job,
            contract_id,
            job_id=job_id_for(contract_id),
        )
        log(event="auto_release_armed", contractId=contract_id, deadline=int(deadline_ms),
            rq_job_id=getattr(job, "id", "") or "")

    def cancel(self, contract_id: str) -> bool:
        jid = job_id_for(contract_id)
        self.queue.scheduled_job_registry.remove(jid)
        try:
            job = Job.fetch(jid, connection=self.queue.connection)
        except NoSuchJobError:
            return False
        job.delete()
        log(event="auto_release_cancelled", contractId=contract_id, rq_job_id=jid)
        return True

    def start(self) -> None:
        return None

    def stop(self, timeout: float = 5.0) -> None:
        return None
