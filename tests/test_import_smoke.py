import sys
import pytest
from unittest.mock import patch


@pytest.mark.parametrize("scheduler_backend", ["thread", "rq"])
@pytest.mark.parametrize("dispatch_mode", ["log", "rq"])
def test_import_graph_smoke(scheduler_backend, dispatch_mode):
    """
    The API and worker modules import cleanly whatever backends are configured.
    """
    with patch.dict("os.environ", {
        "SCHEDULER_BACKEND": scheduler_backend,
        "EVENT_DISPATCH_MODE": dispatch_mode,
        "REDIS_URL": "redis://localhost:6379/0",  # harmless default
    }):
        # Force re-import of the app module to exercise import side-effects
        sys.modules.pop("escrow.main", None)
        try:
            import escrow.main
            import escrow.queue.jobs
            import escrow.queue.scheduler
        except ImportError as e:
            pytest.fail(f"Import failed with scheduler={scheduler_backend} dispatch={dispatch_mode}: {e}")


def test_uvicorn_importable():
    from escrow.main import app
    assert app is not None
