"""Logging configuration for SiteDeck.

All modules obtain loggers through :func:`get_logger` so that records share
the ``sitedeck`` namespace and a single handler installed by
:func:`setup_logging`.
"""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER_NAME = "sitedeck"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer", "httpx", "httpcore")


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``sitedeck`` namespace.

    Args:
        name: Usually ``__name__`` of the calling module

    Returns:
        Logger instance
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the SiteDeck logger hierarchy.

    Args:
        verbose: Emit DEBUG records, including AWS SDK chatter at INFO
        quiet: Only emit WARNING and above
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False

    sdk_level = logging.INFO if verbose else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)
