from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import jinja2

from .alertmanager import AlertBatch

logger = logging.getLogger("jiralert.template")


class TemplateError(RuntimeError):
    pass


class TemplateRenderError(TemplateError):
    pass


class Templates:
    """Macro library loaded from the template file.

    Receiver fields are short Jinja2 snippets; each is compiled together with
    the library so the snippet can call any macro the file defines.
    """

    def __init__(self, source: str = "") -> None:
        self.source = source
        self.env = jinja2.Environment(
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )
        self._compiled: dict[str, jinja2.Template] = {}
        try:
            self.env.parse(source)
        except jinja2.TemplateSyntaxError as exc:
            raise TemplateError(f"template line {exc.lineno}: {exc.message}") from exc

    def _compile(self, text: str) -> jinja2.Template:
        compiled = self._compiled.get(text)
        if compiled is None:
            compiled = self.env.from_string(self.source + text)
            self._compiled[text] = compiled
        return compiled

    def render(self, text: str, batch: AlertBatch) -> str:
        if not text:
            return ""
        try:
            return self._compile(text).render(context(batch)).strip()
        except (jinja2.TemplateError, ArithmeticError, LookupError, TypeError, ValueError) as exc:
            raise TemplateRenderError(f"rendering {text!r}: {exc}") from exc

    def render_value(self, value: Any, batch: AlertBatch) -> Any:
        """Render every string inside a nested field value."""
        if isinstance(value, str):
            return self.render(value, batch)
        if isinstance(value, (list, tuple)):
            return [self.render_value(item, batch) for item in value]
        if hasattr(value, "items"):
            return {key: self.render_value(item, batch) for key, item in value.items()}
        return value


def context(batch: AlertBatch) -> dict[str, Any]:
    return {
        "data": batch,
        "receiver": batch.receiver,
        "status": batch.status,
        "alerts": batch.alerts,
        "group_labels": batch.group_labels,
        "common_labels": batch.common_labels,
        "common_annotations": batch.common_annotations,
        "external_url": batch.external_url,
    }


def load_template(path: str | Path) -> Templates:
    template_path = Path(path)
    try:
        source = template_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TemplateError(f"cannot read {template_path}: {exc}") from exc
    templates = Templates(source)
    logger.debug("loaded template", extra={"path": str(template_path)})
    return templates
