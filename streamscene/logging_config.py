"""
Stream Scene Logging Configuration

Every log line is one JSON object (or a coloured text line when
STREAMSCENE_LOG_FORMAT=text). Context is passed as keyword arguments:

    dispatcher_logger.info("Scheduled post published", post_id=12, attempts=1)

Threads access tokens travel in query strings and form bodies, so anything
that looks like a credential is masked before it is written, both in
context values and in exception messages that echo request URLs.
"""
import logging
import os
import re
import sys
import json
import time
import traceback
from functools import wraps
from typing import Any, Dict, Optional

from .timeutils import utc_now, isoformat_z

LOG_LEVEL = os.environ.get("STREAMSCENE_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.environ.get("STREAMSCENE_LOG_FORMAT", "json")  # json or text

REDACTED_KEYS = {"access_token", "accessToken", "refresh_token", "password", "secret", "authorization"}
MASK = "***"

# access_token=abc, access_token%3Dabc or "access_token": "abc" inside URLs and error text
_TOKEN_IN_TEXT = re.compile(r"(access_token(?:%3D|[\"']?\s*[=:]\s*[\"']?))[^&\s'\",}]+", re.IGNORECASE)


def redact(value: Any) -> Any:
    """Mask credentials in a context value (recurses into dicts and lists)."""
    if isinstance(value, dict):
        return {k: MASK if k in REDACTED_KEYS else redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if isinstance(value, str):
        return _TOKEN_IN_TEXT.sub(r"\1" + MASK, value)
    return value


# ============================================================
# FORMATTERS
# ============================================================

class StructuredFormatter(logging.Formatter):
    """One JSON object per line"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": isoformat_z(utc_now()),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(getattr(record, "context", {}))
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Readable single-line output for local development"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[90m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        line = f"{color}{utc_now():%H:%M:%S} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        context = getattr(record, "context", {})
        fields = " ".join(f"{k}={v}" for k, v in context.items() if k != "traceback")
        if fields:
            line += f" {self.DIM}{fields}{self.RESET}"
        if context.get("traceback"):
            line += "\n" + context["traceback"]
        return line


def _handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(TextFormatter() if LOG_FORMAT == "text" else StructuredFormatter())
    return handler


# ============================================================
# STRUCTURED LOGGER
# ============================================================

class StructuredLogger:
    """Wraps a stdlib logger; keyword arguments become JSON fields."""

    def __init__(self, name: str, **bound):
        self.name = name
        self.bound = bound
        self.logger = logging.getLogger(name)
        if not self.logger.handlers:
            self.logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
            self.logger.addHandler(_handler())
            self.logger.propagate = False

    def bind(self, **context) -> "StructuredLogger":
        """Child logger that adds ``context`` to every line."""
        return StructuredLogger(self.name, **{**self.bound, **context})

    def _log(self, level: int, message: str, context: Dict[str, Any]):
        if not self.logger.isEnabledFor(level):
            return
        context = redact({**self.bound, **context})
        self.logger.log(level, message, extra={"context": context})

    @staticmethod
    def _describe(error: Optional[BaseException], context: Dict[str, Any]) -> Dict[str, Any]:
        if error is not None:
            context["error_type"] = type(error).__name__
            context["error_message"] = str(error)
            if error.__traceback__ is not None:
                context["traceback"] = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
        return context

    def debug(self, message: str, **context):
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context):
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context):
        self._log(logging.WARNING, message, context)

    def error(self, message: str, error: Optional[BaseException] = None, **context):
        self._log(logging.ERROR, message, self._describe(error, context))

    def critical(self, message: str, error: Optional[BaseException] = None, **context):
        self._log(logging.CRITICAL, message, self._describe(error, context))


# ============================================================
# TIMING
# ============================================================

def timed(logger: StructuredLogger, slow_ms: float = 5000):
    """
    Log how long a call took. Calls slower than ``slow_ms`` are logged as
    warnings, failures as errors (and re-raised).
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{func.__qualname__} failed",
                    error=e,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                raise

            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            if duration_ms > slow_ms:
                logger.warning(f"{func.__qualname__} was slow", duration_ms=duration_ms)
            else:
                logger.debug(f"{func.__qualname__} completed", duration_ms=duration_ms)
            return result

        return wrapper

    return decorator


# ============================================================
# LOGGER INSTANCES
# ============================================================

api_logger = StructuredLogger("streamscene.api")
dispatcher_logger = StructuredLogger("streamscene.dispatcher")
threads_logger = StructuredLogger("streamscene.threads")
db_logger = StructuredLogger("streamscene.db")


def get_logger(name: str) -> StructuredLogger:
    """Get or create a logger under the streamscene namespace"""
    return StructuredLogger(f"streamscene.{name}")
