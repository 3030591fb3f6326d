"""JSON logging configuration for the PKI controller."""

import logging
import threading

from pythonjsonlogger import jsonlogger

from .errors import PKIControllerError

LOGGER_NAME = "pki_controller"

# Fields kept in every record; everything else python-json-logger adds is dropped
LOG_FIELDS = ("timestamp", "level", "thread", "message", "exc_info", "funcName", "lineno")


class ControllerJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter emitting a fixed, short field set.

    The worker thread name is kept so interleaved reconciliations can be told
    apart; module, process and logger name are dropped.
    """

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record["thread"] = threading.current_thread().name

        for key in list(log_record):
            if key not in LOG_FIELDS:
                del log_record[key]


def _setup_logger() -> logging.Logger:
    """Create the controller logger with a single stderr JSON handler."""
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        ControllerJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def set_log_level(level: str) -> None:
    """Apply a level name such as 'DEBUG' to the controller logger."""
    LOGGER.setLevel(level.upper())


def log_error_chain(logger: logging.Logger, error: BaseException, context: str) -> None:
    """Log an error followed by one line per wrapped cause.

    Args:
        logger: Logger to write to
        error: Error whose chain is logged
        context: Short description of what failed (e.g. the request name)
    """
    logger.warning("%s: %s", context, error)
    if isinstance(error, PKIControllerError):
        causes = error.causes()
    else:
        causes = []
        cause = error.__cause__ or error.__context__
        while cause is not None and cause not in causes:
            causes.append(cause)
            cause = cause.__cause__ or cause.__context__
    for cause in causes:
        logger.warning("  caused by: %s", cause)


LOGGER = _setup_logger()
