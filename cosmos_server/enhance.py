"""Super-resolution proxy for viewer tiles and single images.

Tile enhancement is cosmetic: whenever inference is unavailable or fails the
caller gets the original bytes back with a short cache lifetime instead of an
error, so a tile is never blanked.
"""
from __future__ import annotations

import logging
import mimetypes
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import requests

from cosmos_errors import UpstreamUnavailable, ValidationError
from cosmos_server.settings import ServerSettings

_LOGGER = logging.getLogger("Cosmos.Server.Enhance")

MIN_SCALE = 1
MAX_SCALE = 8
DEFAULT_SCALE = 2
_DEFAULT_CONTENT_TYPE = "image/jpeg"
_SAFE_NAME = re.compile(r"[^a-zA-Z0-9_.-]")


@dataclass(frozen=True)
class EnhanceResult:
    body: bytes
    content_type: str
    cache_control: str
    enhanced: bool
    scale: int
    model: str


def parse_scale(raw: Optional[str]) -> int:
    if raw is None or raw == "":
        return DEFAULT_SCALE
    try:
        scale = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"scale must be an integer between {MIN_SCALE} and {MAX_SCALE}") from None
    if not MIN_SCALE <= scale <= MAX_SCALE:
        raise ValidationError(f"scale must be an integer between {MIN_SCALE} and {MAX_SCALE}")
    return scale


class TileEnhancer:
    """Fetches an original image and runs it through the inference endpoint."""

    def __init__(self, settings: ServerSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    def enhance_tile(self, url: str, *, scale: int = DEFAULT_SCALE, model: Optional[str] = None) -> EnhanceResult:
        """Return enhanced bytes, or the original bytes when inference is unavailable.

        Raises ``UpstreamUnavailable`` only when the original itself cannot be fetched.
        """

        model_name = (model or "").strip() or self._settings.hf_model
        original, content_type = self.fetch_original(url)
        fallback = EnhanceResult(
            body=original,
            content_type=content_type,
            cache_control=f"public, max-age={self._settings.fallback_cache_seconds}",
            enhanced=False,
            scale=scale,
            model=model_name,
        )
        if not self._settings.hf_api_token:
            _LOGGER.debug("No inference token configured; serving original tile %s", url)
            return fallback
        try:
            enhanced = self._run_inference(original, model_name)
        except UpstreamUnavailable as exc:
            _LOGGER.info("Inference failed for %s (%s); serving original tile", url, exc)
            return fallback
        return EnhanceResult(
            body=enhanced,
            content_type="image/png",
            cache_control=f"public, max-age={self._settings.enhanced_cache_seconds}",
            enhanced=True,
            scale=scale,
            model=model_name,
        )

    def enhance_to_file(self, url: str, *, model: Optional[str] = None) -> str:
        """Enhance one image, persist it under ``enhanced_dir`` and return its public path."""

        if not self._settings.hf_api_token:
            raise UpstreamUnavailable("HF_API_TOKEN not set")
        model_name = (model or "").strip() or self._settings.hf_model
        original, _content_type = self.fetch_original(url)
        enhanced = self._run_inference(original, model_name)
        out_dir = self._settings.enhanced_dir
        base = _SAFE_NAME.sub("_", url.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0]) or "image"
        stem = base.rsplit(".", 1)[0] if "." in base else base
        out_name = f"{int(time.time() * 1000)}-{stem}-sr.png"
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            (out_dir / out_name).write_bytes(enhanced)
        except OSError as exc:
            raise UpstreamUnavailable(f"Failed to persist enhanced image: {exc}") from exc
        _LOGGER.info("Stored enhanced image %s for %s", out_name, url)
        return f"/enhanced/{out_name}"

    def fetch_original(self, url: str) -> Tuple[bytes, str]:
        if url.startswith("/"):
            return self._read_static(url)
        if not url.lower().startswith(("http://", "https://")):
            raise ValidationError("url must be absolute http(s) or root-relative")
        try:
            response = self._session.get(url, timeout=self._settings.upstream_timeout)
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f"Fetch failed: {exc}") from exc
        if not response.ok:
            raise UpstreamUnavailable(f"Fetch failed with HTTP {response.status_code}")
        content_type = response.headers.get("content-type") or _DEFAULT_CONTENT_TYPE
        return response.content, content_type

    def _read_static(self, url: str) -> Tuple[bytes, str]:
        root = self._settings.static_dir.resolve()
        relative = url.split("?", 1)[0].lstrip("/")
        target = (root / relative).resolve()
        if target != root and root not in target.parents:
            raise ValidationError("url escapes the static directory")
        try:
            body = target.read_bytes()
        except OSError as exc:
            raise UpstreamUnavailable(f"Static file unavailable: {exc}") from exc
        guessed, _ = mimetypes.guess_type(target.name)
        return body, guessed or _DEFAULT_CONTENT_TYPE

    def _run_inference(self, payload: bytes, model: str) -> bytes:
        endpoint = f"{self._settings.inference_base_url.rstrip('/')}/{model}"
        headers = {
            "Authorization": f"Bearer {self._settings.hf_api_token}",
            "Content-Type": "application/octet-stream",
        }
        try:
            response = self._session.post(
                endpoint, data=payload, headers=headers, timeout=self._settings.upstream_timeout
            )
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f"Inference request failed: {exc}") from exc
        if not response.ok:
            raise UpstreamUnavailable(f"Inference failed with HTTP {response.status_code}")
        return response.content
