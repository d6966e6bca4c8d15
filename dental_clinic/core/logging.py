import logging
import sys
from typing import Optional
import structlog
from pythonjsonlogger import jsonlogger

from ..config import Settings, get_settings


def setup_logging(settings: Optional[Settings] = None):
    """Structured logging setup: structlog on top of stdlib logging."""
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level, logging.INFO)

    # JSON formatter for production
    json_formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s"
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Setup root logger; replace our own handler on repeated calls
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_dental_clinic", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(json_formatter if settings.log_json else logging.Formatter("%(message)s"))
    handler._dental_clinic = True
    root.addHandler(handler)
    root.setLevel(level)

    if not settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return structlog.get_logger()
