from __future__ import annotations

import logging

from marketcms.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Configure the root logger once; repeated app factories must not stack handlers.
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    if not any(getattr(handler, "_marketcms", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._marketcms = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    # SQL echo is too noisy outside debugging sessions.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
