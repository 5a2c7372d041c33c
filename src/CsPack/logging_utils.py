"""Structured logging helpers for package builds.

Components log through the ``CsPack`` logger hierarchy and tag records with
``extra={"stage": ...}`` (``content``, ``layout``, ``manifest``, ``archive``,
``build``, ``config``, ``verify``).  :func:`setup_logging` attaches a console
handler and, optionally, a rotating JSON-lines file handler.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import uuid
from datetime import datetime, timedelta, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

__all__ = [
    "LOGGER_NAME",
    "JSONFormatter",
    "generate_correlation_id",
    "mask_sensitive_data",
    "BuildLogger",
    "build_adapter",
    "setup_logging",
]

LOGGER_NAME = "CsPack"
_MANAGED_ATTR = "_cspack_managed"

# Record attributes copied into JSON output when a component sets them.
_CONTEXT_FIELDS = (
    "correlation_id",
    "stage",
    "role",
    "layout",
    "content",
    "raw_name",
    "manifest",
    "archive",
    "size",
    "error",
)

_SENSITIVE_KEY = re.compile(r"(token|secret|password|authorization|sig)", re.IGNORECASE)
_SAS_SIGNATURE = re.compile(r"([?&]sig=)[^&\s]+", re.IGNORECASE)


def generate_correlation_id() -> str:
    """Return a short identifier tying together the log records of one build."""

    return uuid.uuid4().hex[:12]


def mask_sensitive_data(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``payload`` with credential-looking values redacted."""

    masked: Dict[str, Any] = {}
    for key, value in payload.items():
        if _SENSITIVE_KEY.search(key):
            masked[key] = "***masked***"
        elif isinstance(value, Mapping):
            masked[key] = mask_sensitive_data(value)
        elif isinstance(value, str):
            masked[key] = _SAS_SIGNATURE.sub(r"\1***masked***", value)
        else:
            masked[key] = value
    return masked


class JSONFormatter(logging.Formatter):
    """Formatter emitting masked JSON log entries."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            payload[name] = getattr(record, name, None)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str)


class BuildLogger(logging.LoggerAdapter):
    """Logger adapter stamping every record with the build's context fields."""

    def __init__(self, logger: logging.Logger, base_fields: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(logger, {})
        self.base_fields: Dict[str, Any] = dict(base_fields or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        extra = dict(self.base_fields)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: object) -> "BuildLogger":
        """Attach additional persistent fields and return ``self``."""

        self.base_fields.update({k: v for k, v in fields.items() if v is not None})
        return self


def build_adapter(logger: logging.Logger, correlation_id: Optional[str] = None) -> BuildLogger:
    """Wrap ``logger`` so every record carries ``correlation_id``."""

    return BuildLogger(logger, {"correlation_id": correlation_id or generate_correlation_id()})


def _cleanup_logs(log_dir: Path, retention_days: int) -> List[str]:
    removed: List[str] = []
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    for file in log_dir.glob("cspack-*.jsonl*"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if mtime < cutoff:
            file.unlink(missing_ok=True)
            removed.append(file.name)
    return removed


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    *,
    retention_days: int = 30,
    max_log_size_mb: int = 100,
    propagate: bool = False,
) -> logging.Logger:
    """Configure the ``CsPack`` logger.

    Handlers installed by a previous call are replaced rather than stacked, so
    calling this once per build is safe.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, _MANAGED_ATTR, False):
            logger.removeHandler(handler)
            if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) in (
                sys.stdout,
                sys.stderr,
            ):
                continue
            handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    setattr(console, _MANAGED_ATTR, True)
    logger.addHandler(console)

    if log_dir is not None:
        resolved = Path(log_dir).expanduser()
        resolved.mkdir(parents=True, exist_ok=True)
        _cleanup_logs(resolved, retention_days)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            resolved / f"cspack-{today}.jsonl",
            maxBytes=int(max_log_size_mb * 1024 * 1024),
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        setattr(file_handler, _MANAGED_ATTR, True)
        logger.addHandler(file_handler)

    logger.propagate = propagate
    return logger
