"""Logging setup for the stockagent terminal client.

Records always go to a rotating file because stdout carries the
conversation. Debug mode mirrors them to stderr as well.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["setup_logging"]

_DEFAULT_LOG_DIR = Path.home() / ".stockagent" / "logs"
_LOG_FILENAME = "stockagent.log"
_LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
_MAX_BYTES = 1_000_000
_BACKUP_COUNT = 3
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_active_log_path: Path | None = None


def setup_logging(*, debug: bool = False, log_dir: Path | str | None = None, force: bool = False) -> Path:
    """Route root logging to ``stockagent.log`` and return its path.

    Repeated calls keep the first configuration unless ``force`` is set.
    ``STOCKAGENT_LOG_DIR`` replaces the default directory when ``log_dir`` is
    not given.
    """

    global _active_log_path
    if _active_log_path is not None and not force:
        return _active_log_path

    directory = Path(log_dir or os.environ.get("STOCKAGENT_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / _LOG_FILENAME

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
        )
    ]
    if debug:
        handlers.append(logging.StreamHandler(sys.stderr))
    formatter = logging.Formatter(_LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, handlers=handlers, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _active_log_path = log_path
    return log_path
