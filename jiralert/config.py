from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

RECEIVER_TYPES = {"jira", "apprise"}
REQUIRED_PARAMS = {
    "jira": ("api_url", "project", "issue_type", "summary"),
    "apprise": ("urls", "title", "body"),
}
SECRET_PARAMS = {"password", "personal_access_token", "urls"}
SECRET = "<secret>"

_ENV_REF = re.compile(r"^\$\((\w+)\)$")


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class ReceiverConfig:
    name: str
    type: str = "jira"
    params: Mapping[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)


@dataclass(frozen=True)
class Config:
    """Loaded configuration. Treated as an immutable snapshot for the process lifetime."""

    receivers: tuple[ReceiverConfig, ...]
    template: str
    defaults: Mapping[str, Any] = field(default_factory=dict)
    by_name: Mapping[str, ReceiverConfig] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "by_name", MappingProxyType({r.name: r for r in self.receivers}))

    def receiver_by_name(self, name: str) -> ReceiverConfig | None:
        return self.by_name.get(name)

    def to_display_string(self) -> str:
        doc = {
            "defaults": mask_secrets(self.defaults),
            "receivers": [
                {"name": r.name, "type": r.type, **mask_secrets(r.params)} for r in self.receivers
            ],
            "template": self.template,
        }
        return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False)


def mask_secrets(params: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in params.items():
        if key in SECRET_PARAMS and value:
            out[key] = [SECRET for _ in value] if isinstance(value, (list, tuple)) else SECRET
        else:
            out[key] = _plain(value)
    return out


def _plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    return value


def resolve_env_refs(value: Any, env: Mapping[str, str], where: str) -> Any:
    """Expand `$(VAR)` string values from the environment."""
    if isinstance(value, str):
        match = _ENV_REF.match(value.strip())
        if not match:
            return value
        name = match.group(1)
        if name not in env:
            raise ConfigError(f"{where} references unset environment variable {name}")
        return env[name]
    return value


def _require_dict(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{where} must be a mapping")
    return value


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def build_receiver(raw: Any, defaults: Mapping[str, Any], env: Mapping[str, str], where: str) -> ReceiverConfig:
    entry = _require_dict(raw, where)
    name = str(entry.get("name") or "").strip()
    if not name:
        raise ConfigError(f"{where}.name is required")

    params = {**defaults, **entry}
    params.pop("name", None)
    kind = str(params.pop("type", "jira") or "jira").strip().lower()
    if kind not in RECEIVER_TYPES:
        raise ConfigError(f"receiver {name}: unsupported type {kind!r}")

    params = {key: resolve_env_refs(value, env, f"receiver {name}: {key}") for key, value in params.items()}

    missing = [key for key in REQUIRED_PARAMS[kind] if not params.get(key)]
    if missing:
        raise ConfigError(f"receiver {name}: missing required field(s) {', '.join(missing)}")

    return ReceiverConfig(name=name, type=kind, params=_freeze(params))


def parse_config(text: str, env: Mapping[str, str] | None = None, base_dir: Path | None = None) -> Config:
    env = os.environ if env is None else env
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML: {exc}") from exc

    root = _require_dict(raw, "configuration")
    defaults = _require_dict(root.get("defaults") or {}, "defaults")

    receivers_raw = root.get("receivers")
    if not isinstance(receivers_raw, list) or not receivers_raw:
        raise ConfigError("receivers must be a non-empty list")

    receivers: list[ReceiverConfig] = []
    seen: set[str] = set()
    for i, entry in enumerate(receivers_raw):
        receiver = build_receiver(entry, defaults, env, f"receivers[{i}]")
        if receiver.name in seen:
            raise ConfigError(f"duplicate receiver name: {receiver.name}")
        seen.add(receiver.name)
        receivers.append(receiver)

    template = str(root.get("template") or "").strip()
    if not template:
        raise ConfigError("template is required")
    if base_dir is not None and not Path(template).is_absolute():
        template = str(base_dir / template)

    return Config(receivers=tuple(receivers), template=template, defaults=_freeze(defaults))


def load_config(path: str | Path, env: Mapping[str, str] | None = None) -> Config:
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read {config_path}: {exc}") from exc
    return parse_config(text, env=env, base_dir=config_path.parent)
