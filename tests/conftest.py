from __future__ import annotations

import json
from dataclasses import dataclass, field

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from jiralert.alertmanager import AlertBatch
from jiralert.app import create_app
from jiralert.config import ReceiverConfig, parse_config
from jiralert.metrics import RequestMetrics
from jiralert.notify import NotificationOutcome
from jiralert.template import Templates

TEMPLATE = """{% macro summary() %}
[{{ status | upper }}:{{ alerts | length }}] {{ group_labels.values() | join(" ") }}
{% endmacro %}
{% macro description() %}
{% for alert in alerts %}
- {{ alert.annotations.get("summary", "") }}
{% endfor %}
{% endmacro %}
"""

CONFIG = """
defaults:
  api_url: https://jira.example.com
  user: jiralert
  password: $(JIRA_PASSWORD)
  issue_type: Bug
  summary: '{{ summary() }}'
  description: '{{ description() }}'
receivers:
  - name: team-a
    project: TA
  - name: team-b
    project: TB
    priority: Major
template: jiralert.tmpl
"""


def alert(status: str = "firing", **labels: str) -> dict:
    return {
        "status": status,
        "labels": {"alertname": "HighLatency", **labels},
        "annotations": {"summary": f"latency is high ({status})"},
        "startsAt": "2024-05-01T10:00:00.123456789Z",
        "endsAt": "0001-01-01T00:00:00Z",
        "generatorURL": "http://prometheus:9090/graph",
        "fingerprint": "abc123",
    }


def payload(receiver: str = "team-a", alerts: list[dict] | None = None, **extra) -> bytes:
    body = {
        "version": "4",
        "groupKey": '{}:{alertname="HighLatency"}',
        "status": "firing",
        "receiver": receiver,
        "groupLabels": {"alertname": "HighLatency"},
        "commonLabels": {"alertname": "HighLatency", "severity": "critical"},
        "commonAnnotations": {},
        "externalURL": "http://alertmanager:9093",
        "alerts": [alert()] if alerts is None else alerts,
        **extra,
    }
    return json.dumps(body).encode("utf-8")


@dataclass
class FakeGateway:
    outcome: NotificationOutcome = field(default_factory=NotificationOutcome.success)
    calls: list[tuple[ReceiverConfig, AlertBatch]] = field(default_factory=list)

    async def notify(self, receiver: ReceiverConfig, batch: AlertBatch) -> NotificationOutcome:
        self.calls.append((receiver, batch))
        return self.outcome


@pytest.fixture
def config():
    return parse_config(CONFIG, env={"JIRA_PASSWORD": "s3cret"})


@pytest.fixture
def templates():
    return Templates(TEMPLATE)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def metrics():
    return RequestMetrics(CollectorRegistry())


@pytest.fixture
def client(config, templates, gateway, metrics):
    app = create_app(config, templates, gateway=gateway, metrics=metrics)
    return TestClient(app)
