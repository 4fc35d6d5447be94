# geostory/utils/logger.py

import logging
import traceback

# Handlers and formatting are attached by observability.logger.configure_logging;
# until then records propagate to whatever the root logger does (pytest capture, etc).
access_logger = logging.getLogger("access")
error_logger = logging.getLogger("error")


def log_info(message: str) -> None:
    access_logger.info(message)


def log_warning(message: str) -> None:
    access_logger.warning(message)


def log_exception(e: Exception, context: str = "") -> None:
    tb = "".join(traceback.format_exception(type(e), e, e.__traceback__))
    error_logger.error(f"Exception in {context}: {type(e).__name__}: {e}\n{tb}")
