"""Relay entrypoint. Loads and validates config, builds the routing table."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from crossrelay import __version__
from crossrelay.adapters.base import AdapterBase
from crossrelay.config import Config, cfg, load_config_with_env
from crossrelay.core.errors import BridgeConfigurationError
from crossrelay.gateway import BridgeRoutingTable, RelayOrchestrator, create_correlation_store

# Stdlib loggers routed through loguru
_INTERCEPTED_LIBRARIES = ["asyncio"]


def _intercept_logging(level: str) -> None:
    """Route stdlib logging from libraries to loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            try:
                log_level: str | int = logger.level(record.levelname).name
            except ValueError:
                log_level = record.levelno
            msg = record.getMessage().replace("{", "{{").replace("}", "}}")
            logger.patch(
                lambda r: r.update(
                    name=record.name,
                    function=record.funcName,
                    line=record.lineno,
                ),
            ).opt(exception=record.exc_info).log(log_level, msg)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for lib in _INTERCEPTED_LIBRARIES:
        lib_logger = logging.getLogger(lib)
        lib_logger.handlers = [InterceptHandler()]
        lib_logger.propagate = False
        lib_logger.setLevel(level)


def _safe_message_filter(record: Any) -> bool:
    """Escape angle brackets so relayed HTML in messages is not read as color tags."""
    if isinstance(record.get("message"), str):
        record["message"] = record["message"].replace("<", "\\<")
    return True


def setup_logging(verbose: bool = False) -> str:
    """Configure loguru. Replace default logging.

    Level: verbose=True enables DEBUG; otherwise LOG_LEVEL if valid, else INFO.
    Returns the chosen level.
    """
    level = "INFO"
    if verbose:
        level = "DEBUG"
    else:
        env_level = (os.environ.get("LOG_LEVEL") or "").upper()
        if env_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
            level = env_level

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=("<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}"),
        filter=_safe_message_filter,
    )
    _intercept_logging(level)
    return level


def reload_config(config_path: Path) -> Config:
    """Load config from path and update global cfg. Raises on invalid config."""
    data = load_config_with_env(config_path)
    cfg.reload(data)
    return cfg


def build_orchestrator(
    config: Config,
    left_adapter: AdapterBase,
    right_adapter: AdapterBase,
    router: BridgeRoutingTable | None = None,
) -> RelayOrchestrator:
    """Wire routing, correlation and adapters into an orchestrator."""
    if router is None:
        router = BridgeRoutingTable()
        router.load_from_config(config.raw)
    store = create_correlation_store(config)
    return RelayOrchestrator(config, router, store, left_adapter, right_adapter)


def routing_summary(config: Config, router: BridgeRoutingTable) -> list[str]:
    """Human-readable lines describing every configured bridge."""
    arrows = {"both": "<->", "l2r": "->", "r2l": "<-"}
    lines = []
    for bridge in router.all_bridges():
        line = (
            f"{bridge.name}: {config.left_platform} {bridge.left_chat_id} "
            f"{arrows.get(bridge.direction, '?')} {config.right_platform} {bridge.right_channel_id}"
        )
        if bridge.thread_routes:
            line += f" ({len(bridge.thread_routes)} thread routes)"
        lines.append(line)
    return lines


def main(argv: list[str] | None = None) -> None:
    """Main entrypoint."""
    parser = argparse.ArgumentParser(description="crossrelay: two-platform chat relay")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if not args.config.exists():
        logger.error("Config file not found: {}", args.config)
        sys.exit(1)

    try:
        config = reload_config(args.config)
    except BridgeConfigurationError as exc:
        logger.error("Invalid config {}: {} ({})", args.config, exc, exc.code)
        sys.exit(1)
    except yaml.YAMLError:
        sys.exit(1)
    logger.info("Config loaded from {}", args.config)

    router = BridgeRoutingTable()
    router.load_from_config(config.raw)
    for line in routing_summary(config, router):
        print(line)
    logger.info(
        "Relay ready: {} bridges, correlation backend {}",
        len(router.all_bridges()),
        config.correlation_backend,
    )


if __name__ == "__main__":
    main()
