"""Relay entrypoint. Loads config, attaches stdio, runs the relay until one side ends.

Exit codes: 0 when a side closed cleanly, 1 on a relay fault, 2 on bad
configuration, 130 when interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from busrelay import __version__
from busrelay.config import Config, RelaySettings, cfg, load_config_with_env
from busrelay.core.errors import ConfigurationError, RelayError
from busrelay.gateway import Relay, Termination
from busrelay.identity import validate_identity
from busrelay.transport import FrameTransport, open_stdio

EXIT_OK = 0
EXIT_FAULT = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

# Third-party libraries to intercept and route through loguru
_INTERCEPTED_LIBRARIES = ["aio_pika", "aiormq", "aiormq.connection", "pamqp"]


def _intercept_logging(level: str) -> None:
    """Route third-party library logs to loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            try:
                log_level = logger.level(record.levelname).name
            except ValueError:
                log_level = str(record.levelno)
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
    """Escape braces/angles in log messages to prevent format/tag errors."""
    if isinstance(record.get("message"), str):
        msg = record["message"]
        msg = msg.replace("{", "{{").replace("}", "}}").replace("<", "\\<")
        record["message"] = msg
    return True


def setup_logging(verbose: bool = False) -> None:
    """Configure loguru on stderr only; stdout carries frames.
    Level: verbose=True or LOG_LEVEL=DEBUG enables DEBUG; otherwise INFO."""
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


def reload_config(config_path: Path) -> Config:
    """Load config from path and update global cfg."""
    data = load_config_with_env(config_path)
    cfg.reload(data)
    return cfg


def resolve_settings(config: Config, identity: str | None = None) -> RelaySettings:
    """Settings from config; an explicit identity (CLI) wins over config and env."""
    settings = config.settings()
    if identity:
        settings = dataclasses.replace(settings, identity=validate_identity(identity))
    return settings


def exit_code_for(result: Termination | BaseException) -> int:
    """Map a run outcome to the process exit code."""
    if isinstance(result, Termination):
        return EXIT_OK if result.clean else EXIT_FAULT
    if isinstance(result, ConfigurationError):
        return EXIT_CONFIG
    if isinstance(result, (KeyboardInterrupt, asyncio.CancelledError)):
        return EXIT_INTERRUPTED
    if isinstance(result, RelayError) and result.clean:
        return EXIT_OK
    return EXIT_FAULT


async def _run(settings: RelaySettings) -> Termination:
    """Attach stdio, run the relay; SIGINT/SIGTERM cancel it so cleanup still runs."""
    reader, writer = await open_stdio()
    transport = FrameTransport(
        reader,
        writer,
        byte_order=settings.byte_order,
        max_frame_bytes=settings.max_frame_bytes,
    )
    relay = Relay(settings, transport)

    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)  # type: ignore[union-attr]
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for {} not supported on this platform", sig)

    try:
        return await relay.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
        transport.close()


def main(argv: list[str] | None = None) -> None:
    """Main entrypoint."""
    parser = argparse.ArgumentParser(description="Native-messaging host to AMQP relay")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("busrelay.yaml"),
        help="Path to config file (default: busrelay.yaml; optional)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--identity",
        help="Stable bus identity (default: freshly generated per process)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    # Browsers append the caller origin (and a window handle on Windows); ignore extras.
    args, extra = parser.parse_known_args(argv)

    setup_logging(args.verbose)
    if extra:
        logger.debug("Ignoring extra arguments: {}", extra)

    try:
        config = reload_config(args.config)
        settings = resolve_settings(config, args.identity)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: {}", exc)
        sys.exit(EXIT_CONFIG)
    logger.info(
        "Relay identity {} (service={}, exchange={})",
        settings.identity,
        settings.service_name,
        settings.exchange,
    )

    result: Termination | BaseException
    try:
        try:
            import uvloop

            result = uvloop.run(_run(settings))
        except ImportError:
            result = asyncio.run(_run(settings))
    except RelayError as exc:
        logger.error("Relay stopped with fault: {}", exc)
        result = exc
    except (KeyboardInterrupt, asyncio.CancelledError) as exc:
        logger.info("Relay interrupted")
        result = exc

    if isinstance(result, Termination):
        logger.info("Relay finished: {}", result.reason)
    sys.exit(exit_code_for(result))


if __name__ == "__main__":
    main()
