"""
Audit logging.

Modules log through `logging.getLogger(__name__)`; `configure_logging` attaches
the console and the append-only `audit.log` file handlers to the package logger.
"""

import logging
from pathlib import Path
from typing import Optional

AUDIT_FORMAT = "%(asctime)s - [%(levelname)s]: %(message)s"
AUDIT_FILENAME = "audit.log"

_PACKAGE_LOGGER = "tokensale_app"


def configure_logging(log_dir: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """Install handlers once; calling again only adjusts the level."""
    root = logging.getLogger(_PACKAGE_LOGGER)
    root.setLevel(level)
    if getattr(root, "_audit_configured", False):
        return root

    formatter = logging.Formatter(AUDIT_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path / AUDIT_FILENAME, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root._audit_configured = True
    root.info("Audit engine online (log dir: %s)", log_dir or "console only")
    return root
