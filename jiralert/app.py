from __future__ import annotations

import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Mapping

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response

from . import __version__
from .alertmanager import DecodeError, decode_batch
from .config import Config
from .metrics import RequestMetrics
from .notify import NotifierGateway
from .pages import render_config, render_home
from .template import Templates

UNKNOWN_RECEIVER = "<unknown>"


@dataclass(frozen=True)
class DispatchResult:
    status: int
    message: str = ""
    receiver: str = UNKNOWN_RECEIVER
    group_labels: Mapping[str, str] = field(default_factory=dict)

    @property
    def error(self) -> bool:
        return self.status != HTTPStatus.OK

    def envelope(self) -> dict[str, Any]:
        return {"error": self.error, "status": int(self.status), "message": self.message}


class AppState:
    def __init__(
        self,
        config: Config,
        templates: Templates,
        gateway: NotifierGateway,
        metrics: RequestMetrics,
    ) -> None:
        self.config = config
        self.templates = templates
        self.gateway = gateway
        self.metrics = metrics


async def dispatch_alert(raw: bytes, state: AppState, logger: logging.Logger) -> DispatchResult:
    """Run one webhook body through decode, route, filter and notify.

    Each stage returns early with the result for its failure; the caller
    writes the response and records metrics.
    """
    try:
        batch = decode_batch(raw)
    except DecodeError as exc:
        return DispatchResult(HTTPStatus.BAD_REQUEST, str(exc))

    receiver = state.config.receiver_by_name(batch.receiver)
    if receiver is None:
        return DispatchResult(
            HTTPStatus.NOT_FOUND,
            f"receiver missing: {batch.receiver}",
            group_labels=batch.group_labels,
        )
    logger.debug("matched receiver", extra={"receiver": receiver.name})

    # Resolved alerts are not forwarded.
    firing = batch.firing()
    if len(firing.alerts) < len(batch.alerts):
        logger.warning(
            'receiver should have "send_resolved: false" set in Alertmanager config',
            extra={"receiver": receiver.name, "dropped": len(batch.alerts) - len(firing.alerts)},
        )

    if not firing.alerts:
        return DispatchResult(HTTPStatus.OK, receiver=receiver.name, group_labels=batch.group_labels)

    outcome = await state.gateway.notify(receiver, firing)
    if not outcome.ok:
        status = HTTPStatus.SERVICE_UNAVAILABLE if outcome.retryable else HTTPStatus.INTERNAL_SERVER_ERROR
        cause = outcome.cause
        return DispatchResult(
            status,
            str(cause) or type(cause).__name__,
            receiver=receiver.name,
            group_labels=batch.group_labels,
        )

    return DispatchResult(HTTPStatus.OK, receiver=receiver.name, group_labels=batch.group_labels)


def write_response(result: DispatchResult, metrics: RequestMetrics, logger: logging.Logger) -> JSONResponse:
    response = JSONResponse(status_code=int(result.status), content=result.envelope())
    if result.error:
        logger.error(
            "error handling request",
            extra={
                "statusCode": int(result.status),
                "statusText": HTTPStatus(result.status).phrase,
                "err": result.message,
                "receiver": result.receiver,
                "groupLabels": dict(result.group_labels),
            },
        )
    metrics.observe(result.receiver, int(result.status))
    return response


def create_app(
    config: Config,
    templates: Templates,
    *,
    gateway: NotifierGateway | None = None,
    metrics: RequestMetrics | None = None,
    timeout: float = 30.0,
) -> FastAPI:
    logger = logging.getLogger("jiralert")

    state = AppState(
        config=config,
        templates=templates,
        gateway=gateway if gateway is not None else NotifierGateway(templates, timeout=timeout),
        metrics=metrics if metrics is not None else RequestMetrics(),
    )

    app = FastAPI(title="jiralert", version=__version__, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.jiralert = state

    @app.post("/alert")
    async def alert(request: Request) -> JSONResponse:
        logger.debug("handling /alert webhook request")
        body = await request.body()
        result = await dispatch_alert(body, state, logger)
        return write_response(result, state.metrics, logger)

    @app.get("/", response_class=HTMLResponse)
    async def home() -> HTMLResponse:
        return HTMLResponse(render_home())

    @app.get("/config", response_class=HTMLResponse)
    async def show_config() -> HTMLResponse:
        return HTMLResponse(render_config(state.config.to_display_string()))

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("OK")

    @app.get("/metrics")
    async def show_metrics() -> Response:
        return Response(content=state.metrics.exposition(), media_type=state.metrics.content_type)

    @app.exception_handler(Exception)
    async def on_error(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("request failed: %s", exc)
        result = DispatchResult(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc) or type(exc).__name__)
        return write_response(result, state.metrics, logger)

    logger.info(
        "jiralert app ready",
        extra={"receivers": [r.name for r in config.receivers], "template": config.template},
    )

    return app
