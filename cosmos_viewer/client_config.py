"""Configuration helpers for the viewer runtime."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

VIEWER_SETTINGS_FILE = "viewer_settings.json"
DEFAULT_API_URL = "http://127.0.0.1:8765"
FALLBACK_TILE_SOURCE = "https://openseadragon.github.io/example-images/duomo/duomo.dzi"


@dataclass(frozen=True)
class EnhancementSettings:
    proxy_url: str = f"{DEFAULT_API_URL}/enhance"
    scale: int = 2
    model: str = ""


@dataclass(frozen=True)
class ViewerSettings:
    """Values used to bootstrap the viewer before any dataset is opened."""

    api_base_url: str = DEFAULT_API_URL
    request_timeout: float = 10.0
    max_write_attempts: int = 3
    retry_backoff: float = 0.5
    fallback_tile_source: str = FALLBACK_TILE_SOURCE
    enhancement: EnhancementSettings = EnhancementSettings()
    zoom_step: float = 1.2
    zoom_out_step: float = 0.8
    max_zoom_pixel_ratio: float = 3.0

    @property
    def annotations_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/annotations"


def viewer_settings_from_mapping(data: Mapping[str, Any]) -> ViewerSettings:
    defaults = ViewerSettings()

    def _float(value: Any, fallback: float, minimum: float) -> float:
        if value is None:
            return fallback
        try:
            return max(minimum, float(value))
        except (TypeError, ValueError):
            return fallback

    def _int(value: Any, fallback: int, minimum: int, maximum: int) -> int:
        if value is None:
            return fallback
        try:
            return max(minimum, min(maximum, int(value)))
        except (TypeError, ValueError):
            return fallback

    def _str(value: Any, fallback: str) -> str:
        if value is None:
            return fallback
        token = str(value).strip()
        return token or fallback

    api_base_url = _str(data.get("api_base_url"), defaults.api_base_url).rstrip("/")
    enhance_block = data.get("enhancement")
    if not isinstance(enhance_block, dict):
        enhance_block = {}
    enhancement = EnhancementSettings(
        proxy_url=_str(enhance_block.get("proxy_url"), f"{api_base_url}/enhance"),
        scale=_int(enhance_block.get("scale"), defaults.enhancement.scale, 1, 8),
        model=_str(enhance_block.get("model"), ""),
    )
    return ViewerSettings(
        api_base_url=api_base_url,
        request_timeout=_float(data.get("request_timeout"), defaults.request_timeout, 0.5),
        max_write_attempts=_int(data.get("max_write_attempts"), defaults.max_write_attempts, 1, 10),
        retry_backoff=min(30.0, _float(data.get("retry_backoff"), defaults.retry_backoff, 0.0)),
        fallback_tile_source=_str(data.get("fallback_tile_source"), defaults.fallback_tile_source),
        enhancement=enhancement,
        zoom_step=_float(data.get("zoom_step"), defaults.zoom_step, 1.01),
        zoom_out_step=min(0.99, _float(data.get("zoom_out_step"), defaults.zoom_out_step, 0.1)),
        max_zoom_pixel_ratio=_float(data.get("max_zoom_pixel_ratio"), defaults.max_zoom_pixel_ratio, 0.5),
    )


def load_viewer_settings(settings_path: Optional[Path] = None, *, env: Optional[Mapping[str, str]] = None) -> ViewerSettings:
    """Read viewer_settings.json if it exists, then apply ``COSMOS_API_URL``.

    The env var only fills ``api_base_url`` when the file does not set it.
    """
    data: Dict[str, Any] = {}
    if settings_path is not None:
        try:
            raw = json.loads(Path(settings_path).read_text(encoding="utf-8"))
        except (FileNotFoundError, OSError, json.JSONDecodeError):
            raw = {}
        if isinstance(raw, dict):
            data = raw
    environ = os.environ if env is None else env
    api_override = environ.get("COSMOS_API_URL")
    if api_override and not data.get("api_base_url"):
        data = dict(data, api_base_url=api_override)
    return viewer_settings_from_mapping(data)
