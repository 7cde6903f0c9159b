from __future__ import annotations

import logging
from pathlib import Path

import pytest

from chipsfx import logging_utils
from chipsfx.logging_utils import (
    configure_logging,
    console_level,
    get_log_dir,
    get_log_path,
    log_exception,
)


def test_log_dir_uses_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHIPSFX_LOG_DIR", str(tmp_path))
    assert get_log_dir() == tmp_path
    assert get_log_path() == tmp_path / "chipsfx.log"


def test_configure_logging_adds_file_handler(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHIPSFX_LOG_DIR", str(tmp_path))
    monkeypatch.setattr(logging_utils, "_logging_configured", False)
    configure_logging(force=True)
    logger = logging.getLogger("chipsfx")
    file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
    assert any(Path(h.baseFilename) == tmp_path / "chipsfx.log" for h in file_handlers)


def test_log_exception_appends_traceback(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHIPSFX_LOG_DIR", str(tmp_path))
    try:
        raise RuntimeError("boom")
    except RuntimeError as exc:
        path = log_exception("render", exc)
    assert path == tmp_path / "chipsfx.log"
    text = path.read_text(encoding="utf-8")
    assert "render failed: RuntimeError: boom" in text
    assert "Traceback" in text


def test_log_dir_follows_cache_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHIPSFX_LOG_DIR", raising=False)
    monkeypatch.setenv("CHIPSFX_CACHE_DIR", str(tmp_path))
    assert get_log_dir() == tmp_path / "logs"


@pytest.mark.parametrize(
    ("value", "expected"),
    [("debug", logging.DEBUG), ("ERROR", logging.ERROR), ("", logging.WARNING), ("loud", logging.WARNING)],
)
def test_console_level_from_env(monkeypatch: pytest.MonkeyPatch, value: str, expected: int) -> None:
    monkeypatch.setenv("CHIPSFX_LOG_LEVEL", value)
    assert console_level() == expected


def test_forced_reconfigure_keeps_foreign_handlers(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CHIPSFX_LOG_DIR", str(tmp_path))
    logger = logging.getLogger("chipsfx")
    foreign = logging.NullHandler()
    logger.addHandler(foreign)
    try:
        configure_logging(force=True)
        configure_logging(force=True)
        assert foreign in logger.handlers
        owned_files = [
            h
            for h in logger.handlers
            if isinstance(h, logging.FileHandler) and getattr(h, "_chipsfx_owned", False)
        ]
        assert len(owned_files) == 1
    finally:
        logger.removeHandler(foreign)
