from __future__ import annotations

import logging
import sys

NOISY_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "multipart",
)


def configure_logging(level: str = "INFO") -> None:
    """Install a single stdout handler on the root logger.

    Application modules log through ``logging.getLogger(__name__)``; this only
    decides where those records go and how they look.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
