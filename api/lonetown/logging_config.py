"""
Process-wide logging setup.

Modules log through ``logging.getLogger(__name__)``; this only installs the
handler and level once at startup.
"""

import logging
import sys

from .config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    root.setLevel((level or LOG_LEVEL).upper())
    if any(getattr(h, "_lonetown", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._lonetown = True
    root.addHandler(handler)
