from __future__ import annotations

import logging

from siteqa.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Configure the root logger once; repeated app factories must not stack handlers.
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not any(getattr(handler, "_siteqa", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._siteqa = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level)
    # Keep per-query SQL noise out of application logs.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
