"""
Application logger.

Modules either import the shared ``logger`` or call
``logging.getLogger(__name__)``; both end up on the root handler set up here.
"""
import logging
import sys

from judgefinder.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if not any(getattr(h, "_judgefinder", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._judgefinder = True
        root.addHandler(handler)
    root.setLevel((level or settings.LOG_LEVEL or "INFO").upper())


configure_logging()
logger = logging.getLogger("judgefinder")
