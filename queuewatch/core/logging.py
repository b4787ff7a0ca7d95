from __future__ import annotations

import logging

from queuewatch.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    # Configure root logging once per process; worker and API entrypoints both call this.
    global _configured
    resolved = (level or get_settings().log_level or "INFO").upper()
    if _configured:
        logging.getLogger().setLevel(resolved)
        return
    logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    _configured = True
