import sys
from unittest.mock import patch

import pytest


@pytest.mark.parametrize("order_store", ["memory", "redis"])
@pytest.mark.parametrize("notify_mode", ["sync", "hybrid", "rq"])
def test_import_graph_smoke(order_store, notify_mode):
    """
    The app and the worker entrypoints import cleanly whatever the store and
    notification mode. Nothing touches Redis at import time.
    """
    with patch.dict("os.environ", {
        "ORDER_STORE": order_store,
        "NOTIFY_MODE": notify_mode,
        "REDIS_URL": "redis://localhost:6379/0",
    }), patch.dict(sys.modules):
        for mod in ("remitdesk.main", "remitdesk.core.orchestrator", "remitdesk.queue.jobs"):
            sys.modules.pop(mod, None)
        try:
            import remitdesk.main
            import remitdesk.core.orchestrator
            import remitdesk.queue.jobs
        except ImportError as e:
            pytest.fail(f"Import failed with store={order_store} notify={notify_mode}: {e}")


def test_uvicorn_importable():
    from remitdesk.main import app
    paths = {route.path for route in app.routes}
    assert {"/mcp/messages", "/callback/{channel}", "/admin/metrics", "/health"} <= paths
