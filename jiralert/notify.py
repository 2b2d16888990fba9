from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol
from urllib.parse import urlparse

import apprise
import requests

from .alertmanager import AlertBatch
from .config import ReceiverConfig
from .template import TemplateRenderError, Templates

logger = logging.getLogger("jiralert.notify")

RETRYABLE_HTTP_STATUSES = {429}
CONNECT_TIMEOUT = 5.0


class NotifierConstructionError(RuntimeError):
    pass


class DeliveryError(RuntimeError):
    def __init__(self, message: str, *, retryable: bool, status_code: int | None = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


def retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_HTTP_STATUSES or status_code >= 500


def request_timeout(deadline: float) -> tuple[float, float]:
    """Split a delivery deadline into a (connect, read) pair that ends before it."""
    budget = deadline * 0.9
    connect = min(CONNECT_TIMEOUT, budget / 3)
    return connect, budget - connect


def is_retryable(exc: BaseException) -> bool:
    """Decide whether Alertmanager should redeliver after this failure.

    Every exception lands in exactly one bucket; unknown failures are permanent.
    """
    if isinstance(exc, (NotifierConstructionError, TemplateRenderError)):
        return False
    if isinstance(exc, DeliveryError):
        return exc.retryable
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, requests.Timeout, requests.ConnectionError)):
        return True
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        return response is not None and retryable_status(response.status_code)
    return False


@dataclass(frozen=True)
class NotificationOutcome:
    cause: BaseException | None = None
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.cause is None

    @classmethod
    def success(cls) -> NotificationOutcome:
        return cls()

    @classmethod
    def failure(cls, exc: BaseException) -> NotificationOutcome:
        return cls(cause=exc, retryable=is_retryable(exc))


class Notifier(Protocol):
    receiver: ReceiverConfig

    def notify(self, batch: AlertBatch) -> None: ...

    def close(self) -> None: ...


def group_labels_as_issue_labels(batch: AlertBatch) -> list[str]:
    # Jira labels cannot contain whitespace.
    return [f"{key}={value}".replace(" ", "_") for key, value in sorted(batch.group_labels.items())]


class JiraNotifier:
    def __init__(self, receiver: ReceiverConfig, templates: Templates, timeout: float) -> None:
        self.receiver = receiver
        self.templates = templates
        self.timeout = timeout

        api_url = str(receiver.get("api_url") or "").strip().rstrip("/")
        parsed = urlparse(api_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise NotifierConstructionError(f"receiver {receiver.name}: api_url must be an http(s) URL")
        self.issue_url = f"{api_url}/rest/api/2/issue"

        labels = receiver.get("labels") or ()
        if isinstance(labels, str) or not isinstance(labels, (list, tuple)):
            raise NotifierConstructionError(f"receiver {receiver.name}: labels must be a list")
        self.labels = list(labels)

        fields = receiver.get("fields") or {}
        if not hasattr(fields, "items"):
            raise NotifierConstructionError(f"receiver {receiver.name}: fields must be a mapping")
        self.fields = fields

        self.closed = threading.Event()
        self.session = requests.Session()
        token = receiver.get("personal_access_token")
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        elif receiver.get("user"):
            self.session.auth = (str(receiver.get("user")), str(receiver.get("password") or ""))
        self.session.headers["Accept"] = "application/json"

    def build_issue(self, batch: AlertBatch) -> dict[str, Any]:
        render = self.templates.render
        fields: dict[str, Any] = {
            "project": {"key": render(str(self.receiver.get("project")), batch)},
            "issuetype": {"name": render(str(self.receiver.get("issue_type")), batch)},
            "summary": render(str(self.receiver.get("summary")), batch),
            "description": render(str(self.receiver.get("description") or ""), batch),
        }

        priority = self.receiver.get("priority")
        if priority:
            fields["priority"] = {"name": render(str(priority), batch)}

        labels = [label for label in (render(str(item), batch) for item in self.labels) if label]
        if self.receiver.get("add_group_labels"):
            labels.extend(group_labels_as_issue_labels(batch))
        if labels:
            fields["labels"] = labels

        for key, value in self.fields.items():
            fields[key] = self.templates.render_value(value, batch)

        return {"fields": fields}

    def notify(self, batch: AlertBatch) -> None:
        issue = self.build_issue(batch)
        # The gateway gave up while the issue was being rendered.
        if self.closed.is_set():
            raise DeliveryError(f"delivery to receiver {self.receiver.name} abandoned", retryable=True)

        response = self.session.post(self.issue_url, json=issue, timeout=request_timeout(self.timeout))
        if response.status_code >= 400:
            raise DeliveryError(
                f"jira returned {response.status_code} for receiver {self.receiver.name}: {response.text[:200]}",
                retryable=retryable_status(response.status_code),
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError:
            body = None
        key = str(body.get("key") or "") if isinstance(body, dict) else ""
        logger.info("issue created", extra={"receiver": self.receiver.name, "key": key})

    def close(self) -> None:
        self.closed.set()
        self.session.close()


class AppriseNotifier:
    def __init__(self, receiver: ReceiverConfig, templates: Templates, timeout: float) -> None:
        self.receiver = receiver
        self.templates = templates
        self.timeout = timeout
        self.closed = threading.Event()
        self.apobj = apprise.Apprise()

        urls = receiver.get("urls") or ()
        if isinstance(urls, str):
            urls = (urls,)
        for url in urls:
            if not self.apobj.add(str(url)):
                # Apprise URLs embed credentials; keep them out of the message.
                raise NotifierConstructionError(f"receiver {receiver.name}: invalid apprise url")
        if not len(self.apobj):
            raise NotifierConstructionError(f"receiver {receiver.name}: no apprise urls")

    def notify_type(self, batch: AlertBatch) -> apprise.NotifyType:
        severity = str(batch.common_labels.get("severity") or "info").strip().lower()
        return {
            "critical": apprise.NotifyType.FAILURE,
            "warning": apprise.NotifyType.WARNING,
            "info": apprise.NotifyType.INFO,
        }.get(severity, apprise.NotifyType.INFO)

    def notify(self, batch: AlertBatch) -> None:
        title = self.templates.render(str(self.receiver.get("title")), batch)
        body = self.templates.render(str(self.receiver.get("body")), batch)
        if self.closed.is_set():
            raise DeliveryError(f"delivery to receiver {self.receiver.name} abandoned", retryable=True)

        result = self.apobj.notify(
            title=title,
            body=body,
            notify_type=self.notify_type(batch),
            body_format=apprise.NotifyFormat.TEXT,
        )
        if result is False:
            raise DeliveryError(f"apprise notify failed for receiver {self.receiver.name}", retryable=True)
        logger.info("notification sent", extra={"receiver": self.receiver.name, "targets": len(self.apobj)})

    def close(self) -> None:
        self.closed.set()


NotifierFactory = Callable[[ReceiverConfig, Templates, float], Notifier]

NOTIFIERS: dict[str, NotifierFactory] = {
    "jira": JiraNotifier,
    "apprise": AppriseNotifier,
}


def build_notifier(receiver: ReceiverConfig, templates: Templates, timeout: float) -> Notifier:
    cls = NOTIFIERS.get(receiver.type)
    if cls is None:
        raise NotifierConstructionError(f"receiver {receiver.name}: unsupported type {receiver.type!r}")
    return cls(receiver, templates, timeout)


class NotifierGateway:
    """Single entry point for delivering a batch to a receiver.

    Construction and delivery failures both come back as a NotificationOutcome;
    nothing but cancellation escapes notify(). The notifier is closed once the
    attempt ends, including when the deadline expires or the task is cancelled.
    """

    def __init__(self, templates: Templates, timeout: float = 30.0, factory: NotifierFactory = build_notifier) -> None:
        self.templates = templates
        self.timeout = timeout
        self.factory = factory

    async def notify(self, receiver: ReceiverConfig, batch: AlertBatch) -> NotificationOutcome:
        try:
            notifier = self.factory(receiver, self.templates, self.timeout)
        except Exception as exc:
            if not isinstance(exc, NotifierConstructionError):
                exc = NotifierConstructionError(f"receiver {receiver.name}: {exc}")
            return NotificationOutcome.failure(exc)

        try:
            await asyncio.wait_for(asyncio.to_thread(notifier.notify, batch), timeout=self.timeout)
        except Exception as exc:
            return NotificationOutcome.failure(exc)
        finally:
            notifier.close()
        return NotificationOutcome.success()
