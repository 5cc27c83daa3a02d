"""Package-wide logger factory.

Every module asks for a namespaced logger (``get_logger("request_engine")``) so a
single handler configuration covers the whole engine. Level and optional file
output come from ``DIAG_LOG_LEVEL`` and ``DIAG_LOG_FILE``.
"""

from __future__ import annotations

import logging
import os
import sys

ROOT_LOGGER_NAME = "agentic_diagnostics"
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def _configure_root() -> logging.Logger:
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _configured:
        return root

    level_name = (os.getenv("DIAG_LOG_LEVEL") or "WARNING").strip().upper()
    root.setLevel(getattr(logging, level_name, logging.WARNING))

    if not root.handlers:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(stream_handler)

        log_file = (os.getenv("DIAG_LOG_FILE") or "").strip()
        if log_file:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(_FORMAT))
            root.addHandler(file_handler)

    root.propagate = False
    _configured = True
    return root


def get_logger(name: str) -> logging.Logger:
    _configure_root()
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
