from __future__ import annotations

import logging

from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry
from prometheus_client.parser import text_string_to_metric_families

from conftest import FakeGateway, alert, payload
from jiralert.app import UNKNOWN_RECEIVER, create_app
from jiralert.metrics import RequestMetrics
from jiralert.notify import DeliveryError, NotificationOutcome, NotifierConstructionError

WARNING = 'receiver should have "send_resolved: false" set in Alertmanager config'


def post_alert(client: TestClient, body: bytes):
    return client.post("/alert", content=body, headers={"Content-Type": "application/json"})


def test_single_firing_alert_is_notified(client, gateway, metrics) -> None:
    response = post_alert(client, payload("team-a"))

    assert response.status_code == 200
    assert response.json() == {"error": False, "status": 200, "message": ""}
    assert len(gateway.calls) == 1
    receiver, batch = gateway.calls[0]
    assert receiver.name == "team-a"
    assert len(batch.alerts) == 1
    assert metrics.value("team-a", 200) == 1


def test_resolved_alerts_are_dropped_with_warning(client, gateway, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="jiralert")

    response = post_alert(client, payload("team-a", alerts=[alert("firing"), alert("resolved")]))

    assert response.status_code == 200
    assert len(gateway.calls) == 1
    _, batch = gateway.calls[0]
    assert [a.status for a in batch.alerts] == ["firing"]
    assert [r.getMessage() for r in caplog.records].count(WARNING) == 1


def test_unknown_receiver_is_404(client, gateway, metrics, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="jiralert")

    response = post_alert(client, payload("ghost-team"))

    assert response.status_code == 404
    assert response.json() == {"error": True, "status": 404, "message": "receiver missing: ghost-team"}
    assert gateway.calls == []
    assert metrics.value(UNKNOWN_RECEIVER, 404) == 1
    assert metrics.value("ghost-team", 404) == 0

    record = caplog.records[-1]
    assert record.getMessage() == "error handling request"
    assert record.receiver == UNKNOWN_RECEIVER
    assert record.statusCode == 404
    assert record.groupLabels == {"alertname": "HighLatency"}


def test_transient_failure_is_503(client, gateway, metrics) -> None:
    gateway.outcome = NotificationOutcome.failure(DeliveryError("jira unavailable", retryable=True))

    response = post_alert(client, payload("team-a"))

    assert response.status_code == 503
    assert response.json() == {"error": True, "status": 503, "message": "jira unavailable"}
    assert metrics.value("team-a", 503) == 1


def test_permanent_failure_is_500(client, gateway, metrics) -> None:
    gateway.outcome = NotificationOutcome.failure(NotifierConstructionError("receiver team-a: bad api_url"))

    response = post_alert(client, payload("team-a"))

    assert response.status_code == 500
    assert response.json()["error"] is True
    assert response.json()["message"] == "receiver team-a: bad api_url"
    assert metrics.value("team-a", 500) == 1


def test_timeout_without_message_still_explains(client, gateway) -> None:
    gateway.outcome = NotificationOutcome.failure(TimeoutError())

    response = post_alert(client, payload("team-a"))

    assert response.status_code == 503
    assert response.json()["message"] == "TimeoutError"


def test_malformed_body_is_400(client, gateway, metrics, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="jiralert")

    for body in (b"", b"{oops", b'{"receiver": "team-a", "alerts": "nope"}'):
        response = post_alert(client, body)
        assert response.status_code == 400
        assert response.json()["error"] is True
        assert response.json()["status"] == 400

    assert gateway.calls == []
    assert metrics.value(UNKNOWN_RECEIVER, 400) == 3
    assert caplog.records[-1].groupLabels == {}


def test_all_resolved_is_noop_success(client, gateway, metrics, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="jiralert")

    response = post_alert(client, payload("team-a", alerts=[alert("resolved"), alert("resolved")]))

    assert response.status_code == 200
    assert response.json() == {"error": False, "status": 200, "message": ""}
    assert gateway.calls == []
    assert metrics.value("team-a", 200) == 1
    assert [r.getMessage() for r in caplog.records].count(WARNING) == 1


def test_empty_alert_list_is_noop_without_warning(client, gateway, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="jiralert")

    response = post_alert(client, payload("team-a", alerts=[]))

    assert response.status_code == 200
    assert gateway.calls == []
    assert WARNING not in [r.getMessage() for r in caplog.records]


def test_counter_counts_every_request(client, metrics) -> None:
    before = metrics.value("team-b", 200)

    for _ in range(5):
        assert post_alert(client, payload("team-b")).status_code == 200

    assert metrics.value("team-b", 200) == before + 5


def test_healthz(client) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.text == "OK"


def test_metrics_endpoint(client) -> None:
    post_alert(client, payload("team-a"))
    post_alert(client, payload("ghost-team"))

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    samples = {
        (sample.labels["receiver"], sample.labels["code"]): sample.value
        for family in text_string_to_metric_families(response.text)
        for sample in family.samples
        if sample.name == "jiralert_requests_total"
    }
    assert samples[("team-a", "200")] == 1.0
    assert samples[("<unknown>", "404")] == 1.0


def test_home_page(client) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert "webhook receiver" in response.text
    assert 'href="/config"' in response.text


def test_config_page_hides_secrets(client) -> None:
    response = client.get("/config")

    assert response.status_code == 200
    assert "team-a" in response.text
    assert "s3cret" not in response.text
    assert "&lt;secret&gt;" in response.text


def test_default_gateway_is_built_from_templates(config, templates) -> None:
    app = create_app(config, templates, metrics=RequestMetrics(CollectorRegistry()), timeout=3)

    state = app.state.jiralert
    assert state.gateway.timeout == 3
    assert state.gateway.templates is templates


def test_requests_are_independent(config, templates) -> None:
    gateway = FakeGateway()
    metrics = RequestMetrics(CollectorRegistry())
    client = TestClient(create_app(config, templates, gateway=gateway, metrics=metrics))

    post_alert(client, payload("team-a"))
    gateway.outcome = NotificationOutcome.failure(DeliveryError("down", retryable=True))
    post_alert(client, payload("team-a"))

    assert metrics.value("team-a", 200) == 1
    assert metrics.value("team-a", 503) == 1
