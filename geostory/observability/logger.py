# geostory/observability/logger.py

# structured JSON logger
import logging
import os
import sys

from pythonjsonlogger.json import JsonFormatter

from geostory.config import Settings

_JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _build_formatter() -> logging.Formatter:
    return JsonFormatter(
        fmt=_JSON_FIELDS,
        datefmt="%Y-%m-%dT%H:%M:%S%z",
        rename_fields={"asctime": "time", "levelname": "level", "name": "logger"},
    )


def _has_file_handler(logger: logging.Logger, path: str) -> bool:
    return any(
        isinstance(h, logging.FileHandler) and os.path.abspath(h.baseFilename) == os.path.abspath(path)
        for h in logger.handlers
    )


def configure_logging(settings: Settings) -> None:
    """Configure root logging plus the access/error file loggers with JSON formatting.

    - Adds a JSON console handler (stdout) on root, once.
    - Routes the "access" and "error" loggers to files under LOGS_PATH.
    - Safe to call repeatedly (e.g. under reload): handlers are not duplicated.
    """
    level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    formatter = _build_formatter()

    os.makedirs(settings.LOGS_PATH, exist_ok=True)

    for logger_name, file_name, logger_level in (
        ("access", "access.log", level),
        ("error", "error.log", logging.ERROR),
    ):
        lg = logging.getLogger(logger_name)
        lg.setLevel(logger_level)
        path = os.path.join(settings.LOGS_PATH, file_name)
        if not _has_file_handler(lg, path):
            handler = logging.FileHandler(path, encoding="utf-8")
            handler.setFormatter(formatter)
            lg.addHandler(handler)

    have_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root.handlers
    )
    if not have_console:
        console = logging.StreamHandler(stream=sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        root.addHandler(console)

    logging.getLogger("startup").info(
        "logging configured", extra={"environment": settings.ENVIRONMENT, "level": settings.LOG_LEVEL}
    )
