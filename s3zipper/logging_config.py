"""
s3zipper/logging_config.py
-----------------------------------------------------------------------------
Root logger configuration.  Every other module only does
``logger = logging.getLogger(__name__)``; this is the single place that
decides where the records go.
"""

from __future__ import annotations

import logging
import sys

# Third-party loggers that are chatty at INFO/DEBUG.
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer", "redis")


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger.  Call once at startup.

    Parameters
    ----------
    level : Log level name, e.g. "INFO" or "DEBUG".  Unknown names fall back
            to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
        stream=sys.stdout,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
