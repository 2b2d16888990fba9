from __future__ import annotations

import argparse
import os
import sys

import uvicorn
from prometheus_client import REGISTRY

from . import __version__
from .app import create_app
from .config import ConfigError, load_config
from .logs import LOG_FORMATS, LOG_LEVELS, setup_logging
from .metrics import RequestMetrics
from .template import TemplateError, load_template


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="jiralert", description="Alertmanager webhook receiver for Jira")
    p.add_argument("--listen-address", dest="listen_address", default=":9097", help="The address to listen on for HTTP requests.")
    p.add_argument("--config", default="config/jiralert.yml", help="The JIRAlert configuration file")
    p.add_argument("--log.level", dest="log_level", default="info", choices=list(LOG_LEVELS), help="Log filtering level")
    p.add_argument("--log.format", dest="log_format", default="logfmt", choices=list(LOG_FORMATS), help="Log format to use")
    p.add_argument(
        "--notify.timeout",
        dest="notify_timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for the issue tracker before answering 503",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def parse_listen_address(address: str, port_override: str | None = None) -> tuple[str, int]:
    """Split a Go-style `host:port` address; an empty host listens on all interfaces."""
    if port_override:
        address = f":{port_override}"
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"listen address {address!r} has no port")
    try:
        port_number = int(port)
    except ValueError as exc:
        raise ValueError(f"listen address {address!r} has an invalid port") from exc
    return host.strip("[]") or "0.0.0.0", port_number


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logger = setup_logging(args.log_level, args.log_format)
    logger.info("starting JIRAlert", extra={"version": __version__})

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error("error loading configuration", extra={"path": args.config, "err": str(exc)})
        return 1

    try:
        templates = load_template(config.template)
    except TemplateError as exc:
        logger.error("error loading templates", extra={"path": config.template, "err": str(exc)})
        return 1

    try:
        host, port = parse_listen_address(args.listen_address, os.environ.get("PORT"))
    except ValueError as exc:
        logger.error("invalid listen address", extra={"err": str(exc)})
        return 1

    app = create_app(
        config,
        templates,
        metrics=RequestMetrics(REGISTRY),
        timeout=args.notify_timeout,
    )

    logger.info("listening", extra={"address": f"{host}:{port}"})
    try:
        uvicorn.run(app, host=host, port=port, log_config=None, access_log=False)
    except (OSError, SystemExit) as exc:
        logger.error("failed to start HTTP server", extra={"address": f"{host}:{port}", "err": str(exc)})
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
