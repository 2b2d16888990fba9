from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

FIRING = "firing"
RESOLVED = "resolved"
VALID_STATUSES = {FIRING, RESOLVED}

# Alertmanager emits nanosecond fractions; datetime keeps microseconds.
_FRACTION = re.compile(r"\.(\d{6})\d+")

_EMPTY: Mapping[str, str] = MappingProxyType({})


class DecodeError(ValueError):
    pass


@dataclass(frozen=True)
class Alert:
    status: str
    labels: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    annotations: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    generator_url: str = ""
    fingerprint: str = ""

    @property
    def is_firing(self) -> bool:
        return self.status == FIRING


@dataclass(frozen=True)
class AlertBatch:
    """One Alertmanager webhook notification: a group of alerts for a receiver."""

    receiver: str
    status: str = FIRING
    group_labels: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    common_labels: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    common_annotations: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    external_url: str = ""
    group_key: str = ""
    alerts: tuple[Alert, ...] = field(default_factory=tuple)

    def firing(self) -> AlertBatch:
        """Return the batch restricted to firing alerts.

        The batch itself is returned when nothing had to be dropped.
        """
        kept = tuple(alert for alert in self.alerts if alert.is_firing)
        if len(kept) == len(self.alerts):
            return self
        return replace(self, alerts=kept)


def parse_timestamp(raw: Any, where: str) -> datetime | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise DecodeError(f"{where} must be a timestamp string")
    text = raw.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1), text)
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as exc:
        raise DecodeError(f"{where} is not a valid timestamp: {raw!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _string_map(raw: Any, where: str) -> Mapping[str, str]:
    if raw is None:
        return _EMPTY
    if not isinstance(raw, dict):
        raise DecodeError(f"{where} must be an object")
    for key, value in raw.items():
        if not isinstance(value, str):
            raise DecodeError(f"{where}.{key} must be a string")
    return MappingProxyType(dict(raw))


def _string(raw: Any, where: str) -> str:
    if raw is None:
        return ""
    if not isinstance(raw, str):
        raise DecodeError(f"{where} must be a string")
    return raw


def _decode_alert(raw: Any, where: str) -> Alert:
    if not isinstance(raw, dict):
        raise DecodeError(f"{where} must be an object")
    status = raw.get("status")
    if not isinstance(status, str) or status not in VALID_STATUSES:
        raise DecodeError(f"{where}.status must be firing|resolved")
    return Alert(
        status=status,
        labels=_string_map(raw.get("labels"), f"{where}.labels"),
        annotations=_string_map(raw.get("annotations"), f"{where}.annotations"),
        starts_at=parse_timestamp(raw.get("startsAt"), f"{where}.startsAt"),
        ends_at=parse_timestamp(raw.get("endsAt"), f"{where}.endsAt"),
        generator_url=_string(raw.get("generatorURL"), f"{where}.generatorURL"),
        fingerprint=_string(raw.get("fingerprint"), f"{where}.fingerprint"),
    )


def decode_batch(raw: bytes | str) -> AlertBatch:
    """Decode an Alertmanager webhook body. Raises DecodeError; never returns a partial batch."""
    if not raw or not raw.strip():
        raise DecodeError("empty request body")
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DecodeError(f"invalid JSON: {exc}") from exc

    if not isinstance(body, dict):
        raise DecodeError("payload must be a JSON object")

    alerts = body.get("alerts")
    if alerts is None:
        alerts = []
    if not isinstance(alerts, list):
        raise DecodeError("alerts must be an array")

    status = body.get("status") or FIRING
    if not isinstance(status, str) or status not in VALID_STATUSES:
        raise DecodeError("status must be firing|resolved")

    return AlertBatch(
        receiver=_string(body.get("receiver"), "receiver"),
        status=status,
        group_labels=_string_map(body.get("groupLabels"), "groupLabels"),
        common_labels=_string_map(body.get("commonLabels"), "commonLabels"),
        common_annotations=_string_map(body.get("commonAnnotations"), "commonAnnotations"),
        external_url=_string(body.get("externalURL"), "externalURL"),
        group_key=_string(body.get("groupKey"), "groupKey"),
        alerts=tuple(_decode_alert(item, f"alerts[{i}]") for i, item in enumerate(alerts)),
    )
