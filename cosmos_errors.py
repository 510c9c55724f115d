"""Error taxonomy shared by the annotation service and the viewer runtime."""
from __future__ import annotations


class CosmosError(Exception):
    """Base class for all Cosmos Explorer failures."""


class ValidationError(CosmosError, ValueError):
    """Malformed annotation input; rejected before any write."""


class UpstreamUnavailable(CosmosError):
    """Annotation store, enhancement proxy or catalogue could not be reached."""


class StoreCorrupted(UpstreamUnavailable):
    """Backing annotation document exists but cannot be parsed; never overwritten."""


class TileResolutionFailure(CosmosError):
    """A tile pyramid descriptor could not be opened."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"Failed to open tile source {source!r}: {reason}")
        self.source = source
        self.reason = reason


class ImageDimensionsUnknown(CosmosError, ValueError):
    """Native image size is not known yet; placement must be deferred."""
