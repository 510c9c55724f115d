"""Version metadata for Cosmos Explorer."""
from __future__ import annotations

import os
from typing import Optional

__version__ = "0.4.0"

DEV_MODE_ENV_VAR = "COSMOS_DEV_MODE"
_DEV_SUFFIXES = ("-dev", ".dev")


def is_dev_build(version: Optional[str] = None) -> bool:
    """Return True when the env var forces dev mode or the version carries a dev suffix."""

    value = os.getenv(DEV_MODE_ENV_VAR)
    if value is not None:
        token = value.strip().lower()
        if token in {"1", "true", "yes", "on"}:
            return True
        if token in {"0", "false", "no", "off"}:
            return False
    candidate = (version if version is not None else __version__) or ""
    return any(suffix in candidate.lower() for suffix in _DEV_SUFFIXES)
