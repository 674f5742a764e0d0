import inspect
import logging
import os
import sys

from loguru import logger

from linguamarket.core import path_conf
from linguamarket.core.conf import settings


class InterceptHandler(logging.Handler):
    """
    Route standard logging records into loguru

    `Intercepting standard logging <https://loguru.readthedocs.io/en/stable/overview.html#entirely-compatible-with-standard-logging>`__
    """

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging() -> None:
    """Install the intercept handler on the root logger and uvicorn loggers"""
    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(settings.LOG_STD_LEVEL)

    for name in logging.root.manager.loggerDict.keys():
        logging.getLogger(name).handlers = []
        if 'uvicorn.access' in name or 'watchfiles.main' in name:
            logging.getLogger(name).propagate = False
        else:
            logging.getLogger(name).propagate = True


def set_custom_logfile() -> None:
    """Configure console and optional file sinks"""
    logger.remove()

    logger.add(
        sys.stdout,
        level=settings.LOG_STD_LEVEL,
        format=settings.LOG_FORMAT,
        enqueue=False,
    )

    if not settings.LOG_FILE_ENABLED:
        return

    log_path = path_conf.LOG_DIR
    if not os.path.exists(log_path):
        os.mkdir(log_path)

    # Shared file sink config
    log_config = {
        'format': settings.LOG_FORMAT,
        'enqueue': True,
        'rotation': '00:00',
        'retention': '7 days',
        'compression': 'tar.gz',
    }

    logger.add(
        str(log_path / settings.LOG_ACCESS_FILENAME),
        level=settings.LOG_FILE_ACCESS_LEVEL,
        filter=lambda record: record['level'].no <= 25,
        backtrace=False,
        diagnose=False,
        **log_config,
    )
    logger.add(
        str(log_path / settings.LOG_ERROR_FILENAME),
        level=settings.LOG_FILE_ERROR_LEVEL,
        filter=lambda record: record['level'].no >= 30,
        backtrace=True,
        diagnose=True,
        **log_config,
    )


log = logger
