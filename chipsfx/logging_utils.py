from __future__ import annotations

import logging
import os
import sys
import traceback
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("chipsfx.logging")
_CACHE_DIR_ENV = "CHIPSFX_CACHE_DIR"
_LOG_DIR_ENV = "CHIPSFX_LOG_DIR"
_LOG_LEVEL_ENV = "CHIPSFX_LOG_LEVEL"
_LOG_FILE = "chipsfx.log"
_PACKAGE_LOGGER = "chipsfx"
# Marks handlers installed here so a forced reconfigure leaves foreign ones alone.
_OWNED_ATTR = "_chipsfx_owned"
_logging_configured = False


def _default_cache_dir() -> Path:
    configured = os.environ.get(_CACHE_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "chipsfx"


def get_log_dir() -> Path:
    configured = os.environ.get(_LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return _default_cache_dir() / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def console_level() -> int:
    """Console threshold from ``CHIPSFX_LOG_LEVEL`` (a level name); WARNING otherwise."""
    name = os.environ.get(_LOG_LEVEL_ENV, "").strip().upper()
    level = logging.getLevelName(name) if name else logging.WARNING
    return level if isinstance(level, int) else logging.WARNING


def _own(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _OWNED_ATTR, True)
    return handler


def configure_logging(*, force: bool = False) -> None:
    """Attach a stderr handler (unless the host already logs) and the log file handler."""
    global _logging_configured
    if _logging_configured and not force:
        return

    logger = logging.getLogger(_PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    for handler in [h for h in logger.handlers if getattr(h, _OWNED_ATTR, False)]:
        logger.removeHandler(handler)
        handler.close()

    if not logging.getLogger().handlers:
        console = logging.StreamHandler(stream=sys.__stderr__)
        console.setLevel(console_level())
        console.setFormatter(logging.Formatter("chipsfx %(levelname)s: %(message)s"))
        logger.addHandler(_own(console))

    try:
        get_log_dir().mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    except OSError as exc:
        _LOGGER.warning("Failed to configure file logging: %s", exc)
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(_own(file_handler))

    _logging_configured = True


def log_exception(context: str, exc: BaseException) -> Path | None:
    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        path = get_log_path()
        timestamp = datetime.now().isoformat()
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{timestamp}] {context} failed: {type(exc).__name__}: {exc}\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
        return path
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
