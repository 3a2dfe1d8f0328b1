"""Root logging setup — stdlib logging, level from settings.LOG_LEVEL."""

import logging

from config.settings import settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Idempotent: attaches one stream handler to the root logger."""
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
