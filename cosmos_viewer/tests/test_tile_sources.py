from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from cosmos_errors import TileResolutionFailure
from cosmos_viewer.client_config import EnhancementSettings
from cosmos_viewer.tile_interceptor import TileSourceInterceptor
from cosmos_viewer.tile_source import (
    DeepZoomTileSource,
    ProxiedTileResolver,
    SingleImageTileSource,
    TilePyramid,
    load_tile_source,
    parse_dzi,
)

DZI_URL = "https://openseadragon.github.io/example-images/highsmith/highsmith.dzi"
DZI_XML = """<?xml version="1.0" encoding="UTF-8"?>
<Image xmlns="http://schemas.microsoft.com/deepzoom/2008" TileSize="256" Overlap="2" Format="png">
  <Size Width="7026" Height="9221"/>
</Image>
"""
PROXY = "http://127.0.0.1:8765/enhance"


class _Response:
    def __init__(self, status_code: int, text: str = "") -> None:
        self.status_code = status_code
        self.text = text

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class _Session:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.urls = []
        self.closed = False

    def get(self, url, timeout=None):
        self.urls.append(url)
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    def close(self):
        self.closed = True


def _pyramid() -> TilePyramid:
    return TilePyramid(DeepZoomTileSource(DZI_URL, 7026, 9221, tile_size=256, overlap=2))


def test_parse_dzi_reads_namespaced_descriptor():
    source = parse_dzi(DZI_URL, DZI_XML)
    assert (source.width, source.height, source.tile_size, source.overlap, source.format) == (7026, 9221, 256, 2, "png")
    assert source.max_level == 14
    assert source.level_dimensions(14) == (7026, 9221)
    assert source.level_dimensions(0) == (1, 1)
    assert source.tile_count(14) == (28, 37)


@pytest.mark.parametrize(
    "xml",
    ["<Image", "<Other/>", '<Image TileSize="256"/>', '<Image TileSize="x"><Size Width="1" Height="1"/></Image>'],
)
def test_parse_dzi_rejects_malformed_descriptors(xml):
    with pytest.raises(TileResolutionFailure):
        parse_dzi(DZI_URL, xml)


def test_tile_urls_follow_deep_zoom_layout():
    source = DeepZoomTileSource("https://host/a/b.dzi?sig=1", 100, 100, format="jpg")
    assert source.tile_url(5, 2, 3) == "https://host/a/b_files/5/2_3.jpg?sig=1"


def test_load_tile_source_opens_descriptor():
    session = _Session(_Response(200, DZI_XML))
    pyramid = load_tile_source(DZI_URL, session=session)
    assert session.urls == [DZI_URL]
    assert pyramid.dimensions.width == 7026
    assert pyramid.resolve_tile_url(14, 0, 0).endswith("highsmith_files/14/0_0.png")


@pytest.mark.parametrize("outcome", [_Response(404), requests.ConnectionError("down"), _Response(200, "<html/>")])
def test_load_tile_source_failures(outcome):
    with pytest.raises(TileResolutionFailure) as excinfo:
        load_tile_source(DZI_URL, session=_Session(outcome))
    assert excinfo.value.source == DZI_URL


def test_plain_images_open_without_network():
    pyramid = load_tile_source("https://apod.nasa.gov/image/pillars.jpg", image_size=(2000, 1000))
    assert isinstance(pyramid.source, SingleImageTileSource)
    assert pyramid.dimensions.aspect == pytest.approx(0.5)
    assert load_tile_source("https://apod.nasa.gov/image/pillars.jpg").dimensions is None


def test_proxied_resolver_carries_original_url_and_parameters():
    pyramid = _pyramid()
    resolver = ProxiedTileResolver(pyramid.direct_resolver, PROXY, scale=4, model="org/model")
    rewritten = resolver.resolve(12, 3, 4)
    parts = urlsplit(rewritten)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == PROXY
    query = parse_qs(parts.query)
    assert query["url"] == [pyramid.direct_resolver.resolve(12, 3, 4)]
    assert query["scale"] == ["4"]
    assert query["model"] == ["org/model"]


def test_toggle_restores_identical_urls():
    pyramid = _pyramid()
    interceptor = TileSourceInterceptor(EnhancementSettings(proxy_url=PROXY))
    addresses = [(level, x, y) for level in (0, 9, 14) for x in (0, 1) for y in (0, 2)]
    before = [pyramid.resolve_tile_url(*address) for address in addresses]
    interceptor.enable(pyramid)
    enhanced = [pyramid.resolve_tile_url(*address) for address in addresses]
    assert all(url.startswith(PROXY) for url in enhanced)
    interceptor.disable(pyramid)
    assert [pyramid.resolve_tile_url(*address) for address in addresses] == before
    assert pyramid.resolver is pyramid.direct_resolver


def test_enabling_twice_does_not_double_wrap():
    pyramid = _pyramid()
    interceptor = TileSourceInterceptor(EnhancementSettings(proxy_url=PROXY))
    interceptor.enable(pyramid)
    once = pyramid.resolve_tile_url(10, 1, 1)
    resolver = pyramid.resolver
    interceptor.enable(pyramid)
    assert pyramid.resolver is resolver
    assert pyramid.resolve_tile_url(10, 1, 1) == once
    assert once.count("enhance") == 1


def test_disable_without_enable_is_noop():
    pyramid = _pyramid()
    interceptor = TileSourceInterceptor(EnhancementSettings(proxy_url=PROXY))
    interceptor.disable(pyramid)
    assert not interceptor.is_enabled(pyramid)
    interceptor.apply(pyramid, True)
    assert interceptor.is_enabled(pyramid)
    interceptor.apply(pyramid, False)
    assert not interceptor.is_enabled(pyramid)


@pytest.mark.parametrize("outcome", [_Response(200, DZI_XML), requests.ConnectionError("down")])
def test_locally_created_session_is_closed(monkeypatch, outcome):
    created = []

    def factory():
        session = _Session(outcome)
        created.append(session)
        return session

    monkeypatch.setattr(requests, "Session", factory)
    try:
        load_tile_source(DZI_URL)
    except TileResolutionFailure:
        pass
    assert len(created) == 1
    assert created[0].closed


def test_caller_session_is_left_open():
    session = _Session(_Response(200, DZI_XML))
    load_tile_source(DZI_URL, session=session)
    assert not session.closed
