# fwpolicy_audit/log.py
"""Opt-in logging setup for the ``fwpolicy_audit`` package logger.

The library itself never installs handlers; applications embedding the
auditor call :func:`configure_logging` if they want its messages on
stderr.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

PACKAGE_LOGGER = "fwpolicy_audit"

_handler: Optional[logging.Handler] = None


def configure_logging(
    verbosity: int = 0,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Set up the ``fwpolicy_audit`` logger.

    Calling it again replaces the handler installed by the previous call.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    stream:
        Destination of the handler; ``sys.stderr`` when omitted.
    """
    global _handler
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger(PACKAGE_LOGGER)
    root.setLevel(level)
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    _handler = handler
    return root
