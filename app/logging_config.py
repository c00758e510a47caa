"""Logging setup applied once from the application lifespan."""
import logging

from app.config import settings

# SQL echo is controlled by DEBUG on the engine; keep the pool quiet.
_QUIET_LOGGERS = ("sqlalchemy.pool", "httpx", "httpcore")


def setup_logging() -> None:
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
