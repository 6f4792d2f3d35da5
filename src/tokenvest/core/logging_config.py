"""
tokenvest - Structured Logging

Every tokenvest module logs through ``logging.getLogger(__name__)`` and tags
records with ``extra={"event": "<area>.<action>", ...}``. This module turns
those records into one JSON object per line, on stderr and optionally in a
size-rotated file.

Usage:
    from tokenvest.core.logging_config import setup_logging

    setup_logging(level="INFO", log_file="~/.tokenvest/logs/tokenvest.json")
    logging.getLogger("tokenvest.claims").info(
        "Claim settled", extra={"event": "claim.settled", "amount": 100}
    )
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pythonjsonlogger import jsonlogger

DEFAULT_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5


def _parse_level(level: str) -> int:
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter for vesting events.

    Each record carries the service and environment it came from plus the
    code location that emitted it, so ledger and claim events can be joined
    across processes.
    """

    def __init__(
        self,
        fmt: str = DEFAULT_FORMAT,
        environment: Optional[str] = None,
        service_name: str = "tokenvest",
    ):
        super().__init__(fmt=fmt)
        self.environment = environment or "production"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault("event", None)
        if not log_record.get("timestamp"):
            stamped = datetime.fromtimestamp(record.created, tz=timezone.utc)
            log_record["timestamp"] = stamped.isoformat()
        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["service"] = self.service_name
        log_record["environment"] = self.environment
        log_record["source"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }


def _build_handlers(
    formatter: logging.Formatter,
    level: int,
    log_file: Optional[str],
    enable_console: bool,
    enable_file: bool,
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if enable_file and log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                filename=str(path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    name: str = "tokenvest",
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "production",
    enable_console: bool = True,
    enable_file: bool = True,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> logging.Logger:
    """
    Route a logger tree to JSON handlers, replacing any handlers it had.

    Args:
        name: Root of the logger tree to configure
        log_file: Rotating JSON log file; skipped when None
        level: Level name applied to the logger and its handlers
        environment: Deployment label stamped on every record
        enable_console: Emit to stderr
        enable_file: Emit to log_file when one is given
        max_bytes: Rotation threshold for the file handler
        backup_count: Rotated files to keep

    Returns:
        The configured logger
    """
    numeric_level = _parse_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    for handler in logger.handlers:
        handler.close()
    logger.handlers = []

    formatter = CustomJsonFormatter(environment=environment, service_name=name.split(".")[0])
    try:
        handlers = _build_handlers(
            formatter, numeric_level, log_file, enable_console, enable_file, max_bytes, backup_count
        )
    except OSError as e:
        handlers = _build_handlers(formatter, numeric_level, None, enable_console, False, max_bytes, backup_count)
        for handler in handlers:
            logger.addHandler(handler)
        logger.warning("Log file %s unavailable: %s", log_file, e, extra={"event": "logging.file_unavailable"})
        return logger

    for handler in handlers:
        logger.addHandler(handler)
    return logger


def get_logger(name: str, log_file: Optional[str] = None, level: str = "INFO") -> logging.Logger:
    """Return the named logger, configuring it on first use."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    return setup_logging(name=name, log_file=log_file, level=level)
