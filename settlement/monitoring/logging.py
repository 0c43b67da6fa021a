"""
Structured logging configuration.

Events are rendered as JSON by structlog; stdlib records (uvicorn, httpx,
SQLAlchemy) go through python-json-logger on the same stdout stream. Phone
numbers are masked before rendering since payout and checkout events carry
customers' and recipients' mobile-money numbers.
"""
import logging
import sys
from typing import Any, Callable, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from settlement.config import Settings, get_settings

EventDict = Dict[str, Any]

PHONE_FIELDS = frozenset({"phone", "msisdn", "account_number", "customer_phone", "payment_number"})

# Third-party loggers held at WARNING
_LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def mask_phone(value: Any) -> Any:
    """Keep the last four digits of a phone number."""
    if not isinstance(value, str):
        return value
    digits = [c for c in value if c.isdigit()]
    if len(digits) <= 4:
        return value
    return "*" * (len(digits) - 4) + "".join(digits[-4:])


def mask_phone_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key in PHONE_FIELDS.intersection(event_dict):
        event_dict[key] = mask_phone(event_dict[key])
    return event_dict


def app_context_processor(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """Stamp every event with the app name and environment."""

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app_name", settings.app_name)
        event_dict.setdefault("app_env", settings.app_env)
        return event_dict

    return add_app_context


def build_processors(settings: Settings) -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        mask_phone_fields,
        app_context_processor(settings),
        structlog.processors.JSONRenderer(),
    ]


def _stdout_json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once; the root logger's handlers are replaced.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.addHandler(_stdout_json_handler())

    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
