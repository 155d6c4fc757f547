"""Structured logging configuration using structlog."""

import logging
import re
import sys

import structlog

# Matches bearer credentials in headers, URLs and error strings
# e.g. "Authorization: Bearer sk-live-abc123" -> "Authorization: Bearer <REDACTED>"
_BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE)

_SECRET_KEYS = frozenset({"api_key", "authorization", "payment_api_key", "resend_api_key"})


def _redact(value: str) -> str:
    return _BEARER_PATTERN.sub(r"\1<REDACTED>", value)


class SecretRedactingFilter(logging.Filter):
    """Filter that redacts provider credentials from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact bearer tokens from log message."""
        if record.msg and isinstance(record.msg, str):
            record.msg = _redact(record.msg)
        if record.args:
            record.args = tuple(
                _redact(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


def _redact_secrets(
    logger: logging.Logger, method_name: str, event_dict: dict
) -> dict:
    """Structlog processor to redact credentials from event dictionaries."""
    for key, value in list(event_dict.items()):
        if key.lower() in _SECRET_KEYS and value:
            event_dict[key] = "<REDACTED>"
        elif isinstance(value, str):
            event_dict[key] = _redact(value)
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    secret_filter = SecretRedactingFilter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    root_logger.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, log_level.upper()))
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(secret_filter)
    root_logger.addHandler(handler)

    # httpx logs full request lines, including query strings
    for logger_name in ("httpx", "httpcore", "sqlalchemy.engine"):
        lib_logger = logging.getLogger(logger_name)
        lib_logger.addFilter(secret_filter)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
