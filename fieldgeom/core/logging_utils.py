"""
Logging helpers.

The pipeline usually runs inside a host simulation, so the full log goes to a
file under the user's state directory and only warnings reach the console.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional

ENV_LOG_LEVEL = "FIELDGEOM_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LOG_ONCE_KEYS: set[str] = set()
_LOG_ONCE_LOCK = threading.Lock()


def default_log_dir() -> Path:
    """Per-user log directory (LOCALAPPDATA on Windows, XDG state dir elsewhere)."""
    if os.name == "nt":
        base = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA") or str(Path.home())
        return Path(base) / "fieldgeom" / "logs"

    state_home = os.environ.get("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return Path(state_home) / "fieldgeom" / "logs"


def _parse_log_level(level: str | int) -> int:
    if isinstance(level, int):
        return int(level)
    name = str(level).strip().upper()
    value = logging.getLevelName(name) if name else logging.INFO
    return value if isinstance(value, int) else logging.INFO


def _open_file_handler(path: Path, level: int) -> Optional[logging.FileHandler]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(str(path), encoding="utf-8")
    except OSError:
        return None
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    return handler


def setup_logging(
    *,
    log_level: str | int = "INFO",
    log_dir: Optional[str | Path] = None,
    filename: str = "fieldgeom.log",
    console_level: Optional[str | int] = None,
) -> Optional[Path]:
    """
    Attach a UTF-8 file handler (and optionally a stderr handler) to the root logger.

    Calling it again returns the existing log file instead of adding handlers.
    ``FIELDGEOM_LOG_LEVEL`` overrides ``log_level``.

    Returns:
        Log file path, or None when the log directory is not writable.
    """
    root = logging.getLogger()
    current = next((h for h in root.handlers if isinstance(h, logging.FileHandler)), None)
    if current is not None:
        return Path(current.baseFilename)

    level = _parse_log_level(os.environ.get(ENV_LOG_LEVEL) or log_level)
    root.setLevel(level)

    if console_level is not None:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(_parse_log_level(console_level))
        console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        root.addHandler(console)

    log_path = Path(log_dir) if log_dir is not None else default_log_dir()
    log_path = log_path / filename
    handler = _open_file_handler(log_path, level)
    if handler is None:
        return None
    root.addHandler(handler)

    logging.captureWarnings(True)
    root.info("Logging to %s (level=%s)", log_path, logging.getLevelName(level))
    return log_path


def format_exception_message(prefix: str, message: str, *, log_path: Optional[Path]) -> str:
    if log_path is None:
        return f"{prefix}\n\n{message}"
    return f"{prefix}\n\n{message}\n\n(log file: {log_path})"


def log_once(
    logger: logging.Logger,
    key: str,
    level: int,
    msg: str,
    *args,
    exc_info: bool | BaseException | None = None,
) -> bool:
    """
    Log ``msg`` only the first time ``key`` is seen in this process.

    Per-element warnings (e.g. skipped out-of-domain values) go through here so
    a large mesh does not flood the log.
    """
    with _LOG_ONCE_LOCK:
        if key in _LOG_ONCE_KEYS:
            return False
        _LOG_ONCE_KEYS.add(str(key))

    logger.log(level, msg, *args, exc_info=exc_info)
    return True
