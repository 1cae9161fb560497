from __future__ import annotations

import logging

from railfleet.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging() -> None:
    # Configure the root logger once; repeated app factories must not stack handlers.
    global _configured
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    if _configured:
        logging.getLogger().setLevel(level)
        return
    logging.basicConfig(level=level, format=_LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")
    # SQL echo belongs behind an explicit debug level, not the app default.
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
    _configured = True
