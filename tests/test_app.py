from fastapi.testclient import TestClient

from edumetrics.config import Settings
from edumetrics.main import create_app


def _app():
    app = create_app(Settings(metrics_cleanup_interval_s=3600))

    @app.get("/boom")
    def boom():
        raise RuntimeError("provider exploded")

    return app


def test_health_and_request_tracking():
    with TestClient(_app()) as client:
        assert client.get("/health").json()["status"] == "ok"
        snap = client.get("/_metrics").json()

    requests = snap["counters"]["api.requests"]
    assert {"value": 1, "tags": {"endpoint": "/health", "method": "GET"}} == {
        k: requests[0][k] for k in ("value", "tags")
    }
    responses = snap["counters"]["api.responses"]
    assert responses[0]["tags"] == {"endpoint": "/health", "method": "GET", "status": "200", "success": "true"}


def test_prometheus_export_endpoint():
    with TestClient(_app()) as client:
        client.get("/health")
        r = client.get("/_metrics", params={"format": "prometheus"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert "# TYPE api.requests counter" in r.text
    assert 'api.requests{endpoint="/health",method="GET"} 1' in r.text


def test_unknown_format_is_rejected():
    with TestClient(_app()) as client:
        assert client.get("/_metrics", params={"format": "xml"}).status_code == 400


def test_handler_error_counts_as_500():
    app = _app()
    with TestClient(app, raise_server_exceptions=False) as client:
        assert client.get("/boom").status_code == 500
        metrics = app.state.metrics
        assert metrics.get_counter("api.errors", {"endpoint": "/boom", "method": "GET"}) == 1
        assert metrics.get_counter(
            "api.responses", {"endpoint": "/boom", "method": "GET", "status": 500, "success": False}
        ) == 1
        health = client.get("/_metrics/health").json()
    assert health["total_errors"] == 1
    assert health["total_requests"] >= 2


def test_lifespan_disposes_aggregator():
    app = _app()
    with TestClient(app):
        assert app.state.metrics.sweeping
    assert not app.state.metrics.sweeping


def test_unmatched_paths_share_one_series():
    app = _app()
    with TestClient(app) as client:
        for i in range(50):
            assert client.get(f"/no-such-page/{i}").status_code == 404
        metrics = app.state.metrics
        assert metrics.get_memory_metrics()["counters"] == 3
        assert metrics.get_memory_metrics()["histograms"] == 1
        assert metrics.get_counter("api.requests", {"endpoint": "unmatched", "method": "GET"}) == 50


def test_requests_tagged_with_route_template():
    app = _app()

    @app.get("/topics/{topic_id}")
    def topic(topic_id: str):
        return {"id": topic_id}

    with TestClient(app) as client:
        for topic_id in ("space", "dinosaurs", "volcanoes"):
            client.get(f"/topics/{topic_id}")
        client.post("/topics/space")  # 405: path known, method not
        metrics = app.state.metrics
        assert metrics.get_counter("api.requests", {"endpoint": "/topics/{topic_id}", "method": "GET"}) == 3
        assert metrics.get_counter("api.errors", {"endpoint": "/topics/{topic_id}", "method": "POST"}) == 1
