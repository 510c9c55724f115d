"""Tile pyramid descriptors and per-tile URL resolution strategies."""
from __future__ import annotations

import logging
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple
from urllib.parse import urlencode

import requests

from cosmos_errors import TileResolutionFailure
from cosmos_viewer.viewport_mapper import ImageDimensions

_LOGGER = logging.getLogger("Cosmos.Viewer.TileSource")


class TileUrlResolver(Protocol):
    def resolve(self, level: int, x: int, y: int) -> str: ...


class TileSource(Protocol):
    url: str

    @property
    def dimensions(self) -> Optional[ImageDimensions]: ...

    def tile_url(self, level: int, x: int, y: int) -> str: ...


@dataclass(frozen=True)
class DeepZoomTileSource:
    """Deep Zoom Image (``.dzi``) pyramid addressed as ``<base>_files/<level>/<x>_<y>.<fmt>``."""

    url: str
    width: int
    height: int
    tile_size: int = 254
    overlap: int = 1
    format: str = "jpg"

    @property
    def dimensions(self) -> ImageDimensions:
        return ImageDimensions(float(self.width), float(self.height))

    @property
    def max_level(self) -> int:
        return int(math.ceil(math.log2(max(self.width, self.height, 1))))

    @property
    def level_count(self) -> int:
        return self.max_level + 1

    def level_dimensions(self, level: int) -> Tuple[int, int]:
        self._check_level(level)
        scale = 2.0 ** (level - self.max_level)
        return max(1, int(math.ceil(self.width * scale))), max(1, int(math.ceil(self.height * scale)))

    def tile_count(self, level: int) -> Tuple[int, int]:
        level_width, level_height = self.level_dimensions(level)
        return int(math.ceil(level_width / self.tile_size)), int(math.ceil(level_height / self.tile_size))

    def tile_url(self, level: int, x: int, y: int) -> str:
        base, _, query = self.url.partition("?")
        if base.lower().endswith(".dzi") or base.lower().endswith(".xml"):
            base = base.rsplit(".", 1)[0]
        tile = f"{base}_files/{level}/{x}_{y}.{self.format}"
        return f"{tile}?{query}" if query else tile

    def _check_level(self, level: int) -> None:
        if not 0 <= level <= self.max_level:
            raise ValueError(f"level {level} outside 0..{self.max_level}")


@dataclass(frozen=True)
class SingleImageTileSource:
    """A plain image: every tile address resolves to the image itself."""

    url: str
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def dimensions(self) -> Optional[ImageDimensions]:
        if not self.width or not self.height:
            return None
        return ImageDimensions(float(self.width), float(self.height))

    def tile_url(self, level: int, x: int, y: int) -> str:
        return self.url


@dataclass(frozen=True)
class DirectTileResolver:
    source: TileSource

    def resolve(self, level: int, x: int, y: int) -> str:
        return self.source.tile_url(level, x, y)


@dataclass(frozen=True)
class ProxiedTileResolver:
    """Routes each resolved tile through the enhancement proxy.

    Holds no per-request state, so every URL it produces stands alone.
    """

    inner: TileUrlResolver
    proxy_url: str
    scale: int = 2
    model: str = ""

    def resolve(self, level: int, x: int, y: int) -> str:
        original = self.inner.resolve(level, x, y)
        params = {"url": original, "scale": str(self.scale)}
        if self.model:
            params["model"] = self.model
        separator = "&" if "?" in self.proxy_url else "?"
        return f"{self.proxy_url}{separator}{urlencode(params)}"


class TilePyramid:
    """An opened tile source plus its swappable URL strategy."""

    def __init__(self, source: TileSource) -> None:
        self.source = source
        self._direct = DirectTileResolver(source)
        self.resolver: TileUrlResolver = self._direct

    @property
    def direct_resolver(self) -> DirectTileResolver:
        return self._direct

    @property
    def dimensions(self) -> Optional[ImageDimensions]:
        return self.source.dimensions

    def resolve_tile_url(self, level: int, x: int, y: int) -> str:
        return self.resolver.resolve(level, x, y)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_dzi(url: str, xml_text: str) -> DeepZoomTileSource:
    """Parse a DZI descriptor; raises ``TileResolutionFailure`` on malformed input."""

    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise TileResolutionFailure(url, f"invalid descriptor XML: {exc}") from exc
    if _local_name(root.tag) != "Image":
        raise TileResolutionFailure(url, f"unexpected root element {_local_name(root.tag)!r}")
    size = next((child for child in root if _local_name(child.tag) == "Size"), None)
    if size is None:
        raise TileResolutionFailure(url, "descriptor has no Size element")
    try:
        width = int(size.attrib["Width"])
        height = int(size.attrib["Height"])
        tile_size = int(root.attrib.get("TileSize", 254))
        overlap = int(root.attrib.get("Overlap", 1))
    except (KeyError, ValueError) as exc:
        raise TileResolutionFailure(url, f"bad descriptor attribute: {exc}") from exc
    if width <= 0 or height <= 0 or tile_size <= 0 or overlap < 0:
        raise TileResolutionFailure(url, "descriptor dimensions must be positive")
    tile_format = (root.attrib.get("Format") or "jpg").strip().lower()
    return DeepZoomTileSource(
        url=url,
        width=width,
        height=height,
        tile_size=tile_size,
        overlap=overlap,
        format=tile_format,
    )


def load_tile_source(
    reference: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 10.0,
    image_size: Optional[Tuple[int, int]] = None,
) -> TilePyramid:
    """Open ``reference`` as a tile pyramid.

    ``.dzi`` / ``.xml`` references are fetched and parsed; anything else is a
    single image whose native size is ``image_size`` when known.
    """

    if not reference:
        raise TileResolutionFailure(reference, "empty tile source reference")
    path = reference.split("?", 1)[0].lower()
    if not (path.endswith(".dzi") or path.endswith(".xml")):
        width, height = image_size if image_size else (None, None)
        return TilePyramid(SingleImageTileSource(reference, width, height))
    http = session or requests.Session()
    try:
        response = http.get(reference, timeout=timeout)
    except requests.RequestException as exc:
        raise TileResolutionFailure(reference, str(exc)) from exc
    finally:
        if session is None:
            http.close()
    if not response.ok:
        raise TileResolutionFailure(reference, f"HTTP {response.status_code}")
    source = parse_dzi(reference, response.text)
    _LOGGER.debug(
        "Opened %s (%dx%d, tile=%d, levels=%d)",
        reference,
        source.width,
        source.height,
        source.tile_size,
        source.level_count,
    )
    return TilePyramid(source)
