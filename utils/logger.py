import logging
import sys

from loguru import logger

FORMAT = "[{time:YYYY-MM-DD HH:mm:ss}] {level} {name}: {message}"


class InterceptHandler(logging.Handler):
    """Route stdlib logging (urllib3, http.server) into loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(exception=record.exc_info).log(level, record.getMessage())


def setup_logging(log_level="INFO"):
    """
    Replace loguru's default sink with a stderr sink at the given level.
    """
    level = str(log_level).upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format=FORMAT)
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return logger
