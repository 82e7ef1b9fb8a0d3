"""
Logging setup.

Every module logs through logging.getLogger(__name__). This module
installs one stream handler on the package logger so that
deduplication decisions show up with a consistent, greppable format.
"""

import logging
import sys

LOG_FORMAT = (
    "%(asctime)s level=%(levelname)s logger=%(name)s %(message)s"
)

_HANDLER_NAME = "sales_ledger"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Attach a stream handler to the sales_ledger logger.

    Safe to call more than once: an existing handler is
    reused and only the level is changed.
    """
    logger = logging.getLogger("sales_ledger")
    logger.setLevel(level.upper())

    for handler in logger.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return logger
