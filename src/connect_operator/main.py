"""Main entry point for the Kafka Connect connector operator.

Startup is explicit and ordered:
1. Configuration from the environment (fail fast on invalid settings)
2. Resource registry (immutable kind → model mapping)
3. Resource store, resolver and the shared HTTP connection pool
4. Reconciler and scheduler, run until SIGTERM/SIGINT
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from pathlib import Path

from .client import ConnectionPool
from .config import Config, ConfigurationError
from .reconciler import ConnectorReconciler
from .registry import build_registry
from .resolver import DEFAULT_SECRETS_DIR, ConnectionResolver
from .scheduler import Scheduler
from .store import FileResourceStore

# LogRecord attributes that are not user supplied extra fields
_RESERVED_RECORD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output for production."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the HTTP stack
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


async def run_operator(config: Config, logger: logging.Logger, secrets_dir: Path) -> int:
    """Run the reconcile loop until a shutdown signal arrives."""
    registry = build_registry()
    store = FileResourceStore(config.specs_dir, config.status_dir, registry)
    resolver = ConnectionResolver(secrets_dir=secrets_dir)

    async with ConnectionPool(timeout_seconds=config.request_timeout_seconds) as pool:
        reconciler = ConnectorReconciler(config, store, pool, resolver)
        scheduler = Scheduler(
            reconciler,
            store,
            workers=config.max_concurrent_reconciles,
            resync_interval_seconds=config.resync_interval_seconds,
        )

        # Set up signal handlers for graceful shutdown
        loop = asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info("Received signal", extra={"signal": sig.name})
            scheduler.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

        try:
            await scheduler.run()
        except Exception as e:
            logger.exception("Unhandled exception", extra={"error": str(e)})
            return 1

    logger.info("Operator stopped")
    return 0


async def main(secrets_dir: Path = DEFAULT_SECRETS_DIR) -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    logging.getLogger().setLevel(config.log_level_value)

    logger.info(
        "Starting Kafka Connect connector operator",
        extra={
            "specs_dir": str(config.specs_dir),
            "status_dir": str(config.status_dir),
            "workers": config.max_concurrent_reconciles,
            "dry_run": config.dry_run,
        },
    )

    return await run_operator(config, logger, secrets_dir)


def run() -> None:
    """Entry point for the operator process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
