"""JSON-backed settings for the annotation service and enhancement proxy."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

SETTINGS_FILE = "cosmos_settings.json"
DEFAULT_SR_MODEL = "akhaliq/Real-ESRGAN"
DEFAULT_INFERENCE_BASE = "https://api-inference.huggingface.co/models"
DEFAULT_APOD_URL = "https://api.nasa.gov/planetary/apod"

# Environment variable -> settings attribute.
ENV_OVERRIDES: Dict[str, str] = {
    "COSMOS_DATA_DIR": "data_dir",
    "COSMOS_STATIC_DIR": "static_dir",
    "HF_API_TOKEN": "hf_api_token",
    "HF_SR_MODEL": "hf_model",
    "NASA_API_KEY": "nasa_api_key",
}


@dataclass(frozen=True)
class ServerSettings:
    data_dir: Path = Path("data")
    static_dir: Path = Path("public")
    annotations_filename: str = "annotations.json"
    url_prefix: str = ""
    hf_api_token: Optional[str] = None
    hf_model: str = DEFAULT_SR_MODEL
    inference_base_url: str = DEFAULT_INFERENCE_BASE
    nasa_api_key: Optional[str] = None
    apod_url: str = DEFAULT_APOD_URL
    upstream_timeout: float = 20.0
    fallback_cache_seconds: int = 60
    enhanced_cache_seconds: int = 300
    debug: bool = False
    log_retention: int = 5

    @property
    def annotations_path(self) -> Path:
        return self.data_dir / self.annotations_filename

    @property
    def enhanced_dir(self) -> Path:
        return self.static_dir / "enhanced"


def _coerce_float(raw: Any, fallback: float, *, minimum: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return fallback
    return max(minimum, value)


def _coerce_int(raw: Any, fallback: int, *, minimum: int, maximum: Optional[int] = None) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return fallback
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _coerce_optional_str(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    token = str(raw).strip()
    return token or None


def _normalise_prefix(raw: Any) -> str:
    token = str(raw or "").strip().rstrip("/")
    if token and not token.startswith("/"):
        token = "/" + token
    return token


def settings_from_mapping(data: Mapping[str, Any], base: Optional[ServerSettings] = None) -> ServerSettings:
    """Build settings from a loosely typed mapping, keeping defaults for bad values."""

    defaults = base or ServerSettings()
    values: Dict[str, Any] = {}
    if "data_dir" in data and data["data_dir"]:
        values["data_dir"] = Path(str(data["data_dir"])).expanduser()
    if "static_dir" in data and data["static_dir"]:
        values["static_dir"] = Path(str(data["static_dir"])).expanduser()
    if "annotations_filename" in data:
        name = str(data["annotations_filename"] or "").strip()
        if name and "/" not in name and "\\" not in name:
            values["annotations_filename"] = name
    if "url_prefix" in data:
        values["url_prefix"] = _normalise_prefix(data["url_prefix"])
    if "hf_api_token" in data:
        values["hf_api_token"] = _coerce_optional_str(data["hf_api_token"])
    if "hf_model" in data:
        values["hf_model"] = _coerce_optional_str(data["hf_model"]) or defaults.hf_model
    if "inference_base_url" in data:
        values["inference_base_url"] = (
            _coerce_optional_str(data["inference_base_url"]) or defaults.inference_base_url
        ).rstrip("/")
    if "nasa_api_key" in data:
        values["nasa_api_key"] = _coerce_optional_str(data["nasa_api_key"])
    if "apod_url" in data:
        values["apod_url"] = _coerce_optional_str(data["apod_url"]) or defaults.apod_url
    if "upstream_timeout" in data:
        values["upstream_timeout"] = _coerce_float(data["upstream_timeout"], defaults.upstream_timeout, minimum=0.5)
    if "fallback_cache_seconds" in data:
        values["fallback_cache_seconds"] = _coerce_int(
            data["fallback_cache_seconds"], defaults.fallback_cache_seconds, minimum=0, maximum=3600
        )
    if "enhanced_cache_seconds" in data:
        values["enhanced_cache_seconds"] = _coerce_int(
            data["enhanced_cache_seconds"], defaults.enhanced_cache_seconds, minimum=0, maximum=86400
        )
    if "debug" in data:
        values["debug"] = bool(data["debug"])
    if "log_retention" in data:
        values["log_retention"] = _coerce_int(data["log_retention"], defaults.log_retention, minimum=1, maximum=20)
    return replace(defaults, **values)


def load_server_settings(
    path: Optional[Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ServerSettings:
    """Resolve settings: defaults, then the JSON file, then env, then explicit overrides.

    Environment values never clobber keys passed explicitly in ``overrides``.
    """

    settings = ServerSettings()
    if path is not None:
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            raw = {}
        except (OSError, json.JSONDecodeError):
            raw = {}
        if isinstance(raw, dict):
            settings = settings_from_mapping(raw, settings)

    explicit = dict(overrides or {})
    environ = os.environ if env is None else env
    env_values: Dict[str, Any] = {}
    for env_key, attr in ENV_OVERRIDES.items():
        if attr in explicit:
            continue
        value = environ.get(env_key)
        if value:
            env_values[attr] = value
    if env_values:
        settings = settings_from_mapping(env_values, settings)
    if explicit:
        known = {field.name for field in fields(ServerSettings)}
        settings = settings_from_mapping({k: v for k, v in explicit.items() if k in known}, settings)
    return settings
