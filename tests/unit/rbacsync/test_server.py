import urllib.error
import urllib.request

import pytest

from rbacsync.server import MetricsServer
from rbacsync.stats import SyncMetrics


@pytest.fixture
def server():
    metrics = SyncMetrics()
    server = MetricsServer("127.0.0.1", 0, metrics)
    server.start()
    yield server, metrics
    server.stop()


def _get(server, path):
    return urllib.request.urlopen(f"http://127.0.0.1:{server.port}{path}", timeout=5)


def test_healthz(server):
    srv, _ = server
    with _get(srv, "/healthz") as resp:
        assert resp.status == 200
        assert resp.read() == b"OK"


def test_metrics_exposes_counters(server):
    srv, metrics = server
    metrics.record_success()
    with _get(srv, "/metrics") as resp:
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/plain")
        body = resp.read().decode()
    assert 'role_updates_total{phase="update"} 1.0' in body
    assert "role_update_errors_total" in body


def test_unknown_path_is_404(server):
    srv, _ = server
    with pytest.raises(urllib.error.HTTPError) as excinfo:
        _get(srv, "/nope")
    assert excinfo.value.code == 404
