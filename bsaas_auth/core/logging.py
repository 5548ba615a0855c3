import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Optional

from bsaas_auth.core.context import get_client_ip, get_request_id, get_user_id
from bsaas_auth.core.settings import settings

SERVICE_NAME = "bsaas-auth"
AUDIT_LOGGER_NAME = "bsaas_auth.audit"

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "request_id", "user_id", "client_ip"}

# Substrings of extra keys whose values are replaced before a record is written.
_SECRET_MARKERS = ("password", "token", "secret", "otp", "cookie", "authorization")
REDACTED = "[redacted]"

_QUIET_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine")


def redact_extras(extras: dict[str, Any]) -> dict[str, Any]:
    cleaned = {}
    for key, value in extras.items():
        lowered = key.lower()
        cleaned[key] = REDACTED if any(marker in lowered for marker in _SECRET_MARKERS) else value
    return cleaned


class RequestContextFilter(logging.Filter):
    """Stamp the current request, user and client address onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.user_id = get_user_id()
        record.client_ip = get_client_ip()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line. ``extra=`` fields become top-level keys after redaction."""

    def __init__(self, stream_label: str = "app") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "stream": self.stream_label,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "user_id": getattr(record, "user_id", "-"),
            "client_ip": getattr(record, "client_ip", "-"),
        }
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        payload.update(redact_extras(extras))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _stream_handler(formatter: str, level: str) -> dict:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    loggers = {
        "": {"handlers": ["default"], "level": log_level, "propagate": False},
        AUDIT_LOGGER_NAME: {"handlers": ["audit"], "level": "INFO", "propagate": False},
    }
    for name in _QUIET_LOGGERS:
        loggers[name] = {"handlers": ["default"], "level": "WARNING" if name == "sqlalchemy.engine" else log_level, "propagate": False}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "app"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "default": _stream_handler("json", log_level),
                "audit": _stream_handler("audit_json", "INFO"),
            },
            "loggers": loggers,
        }
    )
    logging.getLogger(__name__).info("Logging configured for environment=%s", settings.environment)


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)
