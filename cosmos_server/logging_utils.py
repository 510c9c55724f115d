from __future__ import annotations

import logging
import os
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from version import __version__, is_dev_build

ROOT_LOGGER_NAME = "Cosmos"
LOG_DIR_ENV_VAR = "COSMOS_LOG_DIR"
_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class ReleaseLogLevelFilter(logging.Filter):
    """Promote debug logs to INFO in release builds so diagnostics stay visible."""

    def __init__(self, release_mode: bool) -> None:
        super().__init__()
        self._release_mode = release_mode

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging shim
        if self._release_mode and record.levelno == logging.DEBUG:
            record.levelno = logging.INFO
            record.levelname = "INFO"
        return True


def resolve_logs_dir(base_path: Path, log_dir_name: str = "CosmosExplorer") -> Path:
    """
    Resolve the directory to store service logs.

    Strategy:
    - Use COSMOS_LOG_DIR if set.
    - Fall back to XDG state/cache locations, then `<base_path>/logs/<log_dir_name>`.
    - Final fallback: tempdir/<log_dir_name>.
    """
    candidates = []

    env_override = os.environ.get(LOG_DIR_ENV_VAR)
    if env_override:
        candidates.append(Path(env_override).expanduser())

    state_home = Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state"))
    cache_home = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
    candidates.append(state_home / "cosmos-explorer" / "logs")
    candidates.append(cache_home / "cosmos-explorer" / "logs")
    candidates.append(base_path / "logs")

    for base in candidates:
        try:
            target = base / log_dir_name
            target.mkdir(parents=True, exist_ok=True)
            return target
        except OSError:
            continue

    temp_fallback = Path(tempfile.gettempdir()) / log_dir_name
    temp_fallback.mkdir(parents=True, exist_ok=True)
    return temp_fallback


def build_rotating_file_handler(
    log_dir: Path,
    filename: str,
    *,
    retention: int = 5,
    max_bytes: int = 512 * 1024,
    formatter: Optional[logging.Formatter] = None,
) -> logging.Handler:
    """Construct a rotating file handler with sane defaults."""
    retention = max(1, retention)
    backup_count = max(0, retention - 1)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    if formatter is not None:
        handler.setFormatter(formatter)
    return handler


def resolve_log_level(debug_enabled: bool) -> int:
    return logging.DEBUG if debug_enabled else logging.INFO


def configure_logging(
    *,
    debug: bool = False,
    log_dir: Optional[Path] = None,
    retention: int = 5,
    console: bool = True,
) -> logging.Logger:
    """Attach console + rotating file handlers to the ``Cosmos`` logger tree.

    Calling it again replaces the handlers installed by the previous call.
    """

    dev_mode = debug or is_dev_build(__version__)
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(resolve_log_level(dev_mode))
    logger.propagate = False
    for handler in list(logger.handlers):
        if getattr(handler, "_cosmos_managed", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(_LOG_FORMAT)
    handlers = []
    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        handlers.append(stream)
    target_dir = log_dir if log_dir is not None else resolve_logs_dir(Path.cwd())
    handlers.append(build_rotating_file_handler(target_dir, "cosmos-server.log", retention=retention, formatter=formatter))
    for handler in handlers:
        handler._cosmos_managed = True  # type: ignore[attr-defined]
        handler.addFilter(ReleaseLogLevelFilter(release_mode=not dev_mode))
        logger.addHandler(handler)
    logger.debug("Logging configured (dev_mode=%s, dir=%s)", dev_mode, target_dir)
    return logger
