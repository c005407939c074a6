from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from rq.exceptions import NoSuchJobError

from escrow.queue.jobs import auto_release_job, deliver_event_job
from escrow.queue.scheduler import RQAutoReleaseScheduler, job_id_for
from escrow.utils.time import to_datetime


@patch("escrow.core.runtime.get_engine")
def test_auto_release_job_fires_through_engine(mock_get_engine):
    engine = MagicMock()
    engine.fire_auto_release.return_value = "released"
    mock_get_engine.return_value = engine
    assert auto_release_job("c1") == "released"
    engine.fire_auto_release.assert_called_once_with("c1")


@patch("escrow.queue.rq_conn.get_queue")
@patch("escrow.queue.jobs.deliver", return_value=None)
def test_deliver_event_job_done(mock_deliver, mock_get_queue):
    deliver_event_job({"event_id": "e1"}, 1)
    mock_deliver.assert_called_once_with({"event_id": "e1"}, 1)
    mock_get_queue.assert_not_called()


@patch("escrow.queue.rq_conn.get_queue")
@patch("escrow.queue.jobs.deliver", return_value=2500)
def test_deliver_event_job_reschedules_with_backoff(mock_deliver, mock_get_queue):
    q = MagicMock()
    mock_get_queue.return_value = q
    deliver_event_job({"event_id": "e1"}, 2)
    q.enqueue_in.assert_called_once_with(timedelta(milliseconds=2500), deliver_event_job, {"event_id": "e1"}, 3)


@patch("escrow.queue.jobs.log")
@patch("escrow.queue.jobs.deliver", side_effect=RuntimeError("redis gone"))
def test_deliver_event_job_propagates_errors(mock_deliver, mock_log):
    with pytest.raises(RuntimeError):
        deliver_event_job({"event_id": "e1"})
    assert mock_log.call_args.kwargs["event"] == "event_job_exception"


@patch("escrow.queue.scheduler.Job")
def test_rq_scheduler_arm_replaces_existing_job(mock_job_cls):
    q = MagicMock()
    existing = MagicMock()
    mock_job_cls.fetch.return_value = existing
    s = RQAutoReleaseScheduler(queue=q)

    s.arm("c1", 1_767_484_800_000)

    q.scheduled_job_registry.remove.assert_called_once_with("auto-release:c1")
    existing.delete.assert_called_once()
    args, kwargs = q.enqueue_at.call_args
    assert args[0] == to_datetime(1_767_484_800_000)
    assert args[2] == "c1"
    assert kwargs["job_id"] == job_id_for("c1")


@patch("escrow.queue.scheduler.Job")
def test_rq_scheduler_cancel_when_not_armed(mock_job_cls):
    q = MagicMock()
    mock_job_cls.fetch.side_effect = NoSuchJobError("auto-release:c1")
    assert RQAutoReleaseScheduler(queue=q).cancel("c1") is False
