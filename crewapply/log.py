"""Logging for crew runs: a stdout handler plus a daily file under ``logs/``."""
from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"
# Third-party loggers that flood DEBUG output.
_QUIET = ("urllib3", "asyncio", "httpx", "openai")

_console: logging.Handler | None = None
_file: logging.Handler | None = None


def _level(value: str | int | None) -> int:
    if isinstance(value, int):
        return value
    name = (value or os.environ.get("LOG_LEVEL") or "INFO").upper()
    return getattr(logging, name, logging.INFO)


def configure_logging(level: str | int | None = None, *, log_dir: Path | None = LOG_DIR) -> None:
    """Install handlers once; later calls only change the console level.

    The file handler always records DEBUG. Set ``CREWAPPLY_NO_LOG_FILE`` (or
    pass ``log_dir=None``) to keep logs on stdout only.
    """
    global _console, _file
    lvl = _level(level)
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if _file is not None else lvl)

    if _console is not None:
        _console.setLevel(lvl)
        return

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FMT)
    _console = logging.StreamHandler(sys.stdout)
    _console.setLevel(lvl)
    _console.setFormatter(formatter)
    root.addHandler(_console)

    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_dir is None or os.environ.get("CREWAPPLY_NO_LOG_FILE"):
        return
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        _file = logging.FileHandler(
            log_dir / f"crewapply_{datetime.now().strftime('%Y-%m-%d')}.log", encoding="utf-8",
        )
    except OSError as e:
        root.warning("File logging disabled: %s", e)
        return
    _file.setLevel(logging.DEBUG)
    _file.setFormatter(formatter)
    root.addHandler(_file)
    root.setLevel(logging.DEBUG)


def get_logger(name: str) -> logging.Logger:
    """Named logger; the first call sets up handlers with the env-driven level."""
    if _console is None:
        configure_logging()
    return logging.getLogger(name)
