"""Reversible routing of tile requests through the enhancement proxy.

Switching strategies only affects tiles requested afterwards; tiles the
engine already fetched or cached keep their original pixels until they are
evicted and requested again.
"""
from __future__ import annotations

import logging

from cosmos_viewer.client_config import EnhancementSettings
from cosmos_viewer.tile_source import ProxiedTileResolver, TilePyramid

_LOGGER = logging.getLogger("Cosmos.Viewer.TileInterceptor")


class TileSourceInterceptor:
    def __init__(self, settings: EnhancementSettings) -> None:
        self._settings = settings

    @property
    def settings(self) -> EnhancementSettings:
        return self._settings

    def is_enabled(self, pyramid: TilePyramid) -> bool:
        return isinstance(pyramid.resolver, ProxiedTileResolver)

    def enable(self, pyramid: TilePyramid) -> None:
        """Route ``pyramid`` through the proxy; a second call is a no-op."""

        if self.is_enabled(pyramid):
            return
        pyramid.resolver = ProxiedTileResolver(
            inner=pyramid.direct_resolver,
            proxy_url=self._settings.proxy_url,
            scale=self._settings.scale,
            model=self._settings.model,
        )
        _LOGGER.debug("Enhancement enabled for %s", pyramid.source.url)

    def disable(self, pyramid: TilePyramid) -> None:
        if not self.is_enabled(pyramid):
            return
        pyramid.resolver = pyramid.direct_resolver
        _LOGGER.debug("Enhancement disabled for %s", pyramid.source.url)

    def apply(self, pyramid: TilePyramid, enabled: bool) -> None:
        if enabled:
            self.enable(pyramid)
        else:
            self.disable(pyramid)
