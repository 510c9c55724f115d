"""NASA Astronomy Picture of the Day catalogue client."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from cosmos_errors import UpstreamUnavailable
from cosmos_server.settings import ServerSettings

_LOGGER = logging.getLogger("Cosmos.Server.Apod")

DEFAULT_COUNT = 6
MAX_COUNT = 12


def clamp_count(raw: Any) -> int:
    try:
        count = int(raw)
    except (TypeError, ValueError):
        count = DEFAULT_COUNT
    return max(1, min(count, MAX_COUNT))


def normalise_apod_item(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": item.get("date"),
        "title": item.get("title"),
        "explanation": item.get("explanation"),
        "url": item.get("url"),
        "thumbnail_url": item.get("thumbnail_url"),
        "media_type": item.get("media_type"),
        "date": item.get("date"),
    }


class ApodClient:
    def __init__(self, settings: ServerSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self._settings.nasa_api_key)

    def fetch(self, count: int = DEFAULT_COUNT) -> List[Dict[str, Any]]:
        if not self._settings.nasa_api_key:
            raise UpstreamUnavailable("NASA_API_KEY not set")
        params = {"api_key": self._settings.nasa_api_key, "thumbs": "true", "count": str(clamp_count(count))}
        try:
            response = self._session.get(self._settings.apod_url, params=params, timeout=self._settings.upstream_timeout)
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f"NASA API error: {exc}") from exc
        if not response.ok:
            _LOGGER.warning("APOD request failed with HTTP %s", response.status_code)
            raise UpstreamUnavailable(f"NASA API error: HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("NASA API returned invalid JSON") from exc
        items = data if isinstance(data, list) else [data]
        return [normalise_apod_item(item) for item in items if isinstance(item, dict)]
