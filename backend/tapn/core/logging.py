"""
Structured logging configuration using structlog.
Outputs JSON in production, pretty-printed in development.

Besides the per-module loggers there is one operator channel
(`tapn.operator`) for events a human has to act on, such as a charge
that could be neither honoured nor refunded.
"""

import logging
import sys
import structlog
from tapn.core.config import get_settings

OPERATOR_LOGGER_NAME = "tapn.operator"


def setup_logging() -> None:
    settings = get_settings()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.ENVIRONMENT == "production":
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ]
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Operator alerts go to stderr as well so they survive stdout filtering
    alert_handler = logging.StreamHandler(sys.stderr)
    alert_handler.setFormatter(formatter)
    alert_handler.setLevel(logging.CRITICAL)
    logging.getLogger(OPERATOR_LOGGER_NAME).addHandler(alert_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def alert_operator(event: str, **context) -> None:
    """Raise a manual-intervention alert on the operator channel."""
    structlog.get_logger(OPERATOR_LOGGER_NAME).critical(
        event,
        manual_intervention_required=True,
        **context,
    )
