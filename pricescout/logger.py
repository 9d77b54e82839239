"""Structured JSON logging configuration using loguru.

This module provides:
- Structured JSON file output with one record per line
- Automatic log rotation, retention and compression
- Fail-fast validation of log directory writability at startup
- Module-bound loggers carrying keyword context (target ids, URLs, run ids)

Design Rationale:
    A scrape run touches dozens of independent targets. Keyword context on
    every record lets an operator filter one target's whole fallback chain
    out of the JSON log without parsing free-text messages.
"""

import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from config.settings import GlobalConfig, get_config
from pricescout.exceptions import LoggingInitializationError


def _json_serializer(record: dict[str, Any]) -> str:
    """Serialize a loguru record into a single JSON line.

    Args:
        record: Loguru record dictionary containing log metadata.

    Returns:
        JSON-formatted string representation of the log record.
    """
    subset = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    if record["exception"] is not None:
        subset["exception"] = {
            "type": record["exception"].type.__name__ if record["exception"].type else None,
            "value": str(record["exception"].value) if record["exception"].value else None,
            "traceback": record["exception"].traceback is not None,
        }

    if record["extra"]:
        subset["context"] = {k: v for k, v in record["extra"].items() if k != "serialized"}

    return json.dumps(subset, default=str) + "\n"


def _serialize_filter(record: dict[str, Any]) -> bool:
    record["extra"]["serialized"] = _json_serializer(record)
    return True


def _validate_log_directory(log_dir: Path) -> None:
    """Validate log directory exists and is writable.

    Args:
        log_dir: Path to the log directory.

    Raises:
        LoggingInitializationError: If directory creation or write test fails.
    """
    try:
        log_dir.mkdir(parents=True, exist_ok=True)

        probe = log_dir / ".write_test"
        probe.write_text("write_test")
        probe.unlink()

    except PermissionError as exc:
        raise LoggingInitializationError(
            log_dir=str(log_dir),
            reason=f"Permission denied: {exc}",
        ) from exc
    except OSError as exc:
        raise LoggingInitializationError(
            log_dir=str(log_dir),
            reason=f"OS error during directory validation: {exc}",
        ) from exc


def configure_logging(config: GlobalConfig | None = None) -> None:
    """Initialize the logging infrastructure.

    Configures loguru with a colourised console sink and a rotating JSON
    file sink. Call once during bootstrap before any scraping starts.

    Args:
        config: Optional GlobalConfig instance. If None, uses singleton.

    Raises:
        LoggingInitializationError: If log directory validation fails.
    """
    if config is None:
        config = get_config()

    logger.remove()

    _validate_log_directory(config.log_dir)

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    logger.add(
        sys.stderr,
        format=console_format,
        level=config.log_level,
        colorize=True,
        backtrace=config.debug,
        diagnose=config.debug,
    )

    logger.add(
        str(config.log_dir / "pricescout_{time:YYYY-MM-DD}.json"),
        format="{extra[serialized]}",
        level=config.log_level,
        rotation=config.log_rotation,
        retention=config.log_retention,
        compression="gz",
        serialize=False,
        filter=_serialize_filter,
    )

    logger.info(
        "Logging infrastructure initialized",
        app_name=config.app_name,
        environment=config.environment,
        log_level=config.log_level,
        log_dir=str(config.log_dir),
    )


def get_logger(name: str) -> "logger":
    """Get a logger bound with the module name.

    Args:
        name: Module or component name for log attribution.

    Returns:
        Loguru logger instance bound with the provided name context.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("Target scraped", target_id=42)
    """
    return logger.bind(module=name)
