# lessonpay/core/logger.py
from __future__ import annotations
import logging
import sys
from typing import Any, MutableMapping

import structlog
from lessonpay.core.settings import settings

REDACTED_VALUE = "[REDACTED]"

_EXACT_KEYS = {"email", "client_secret", "api_key", "card_number", "cvc"}
_SUFFIX_KEYS = ("_secret", "_api_key", "_token")

# loggers that are too chatty at INFO next to request_completed
_QUIET_LOGGERS = ("stripe", "uvicorn.access")


def redact_secrets(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Mask client secrets, keys and customer emails before rendering."""
    for key in list(event_dict):
        lowered = key.lower()
        if lowered in _EXACT_KEYS or lowered.endswith(_SUFFIX_KEYS):
            event_dict[key] = REDACTED_VALUE
    return event_dict


def setup_logging() -> None:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(level=level, format="%(message)s", stream=sys.stdout)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.DEV_MODE:
        processors += [structlog.processors.ExceptionRenderer(), structlog.processors.KeyValueRenderer(sort_keys=True)]
    else:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
