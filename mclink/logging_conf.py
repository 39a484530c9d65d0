# mclink/logging_conf.py
from __future__ import annotations

import logging
import sys

from .config import settings
from .middleware.correlation import CorrelationIdFilter

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | rid=%(request_id)s | %(message)s"

_configured = False


def setup_logging() -> None:
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    # on the handler, so records propagated from any logger carry the ids
    handler.addFilter(CorrelationIdFilter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.addHandler(handler)
    _configured = True
