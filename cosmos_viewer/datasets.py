"""Dataset descriptors shown in the gallery."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Tuple

_DEMO_ROOT = "https://openseadragon.github.io/example-images"


@dataclass(frozen=True)
class Dataset:
    """Immutable description of one browsable image.

    ``tile_source`` is a deep-zoom descriptor URL; when it is empty the dataset
    is a single image at ``image_url`` with an optional native ``image_size``.
    """

    id: str
    title: str
    description: str = ""
    category: str = ""
    tile_source: str = ""
    thumbnail_url: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)
    image_url: str = ""
    image_size: Optional[Tuple[int, int]] = None

    @property
    def is_deep_zoom(self) -> bool:
        return bool(self.tile_source)

    @property
    def source_reference(self) -> str:
        return self.tile_source or self.image_url


def _demo(dataset_id: str, title: str, description: str, category: str, image: str, tags: Iterable[str]) -> Dataset:
    return Dataset(
        id=dataset_id,
        title=title,
        description=description,
        category=category,
        tile_source=f"{_DEMO_ROOT}/{image}/{image}.dzi",
        thumbnail_url=f"{_DEMO_ROOT}/{image}/{image}_files/10/0_0.jpg",
        tags=tuple(tags),
    )


SAMPLE_DATASETS: Tuple[Dataset, ...] = (
    _demo(
        "andromeda-demo",
        "Andromeda Galaxy (Demo Tiles)",
        "Zoom into a gigapixel-scale galaxy sample. Demonstrates deep zoom fluidity.",
        "Galaxy",
        "highsmith",
        ("galaxy", "stars", "deep field"),
    ),
    _demo(
        "moon-demo",
        "Lunar Highlands (Demo Tiles)",
        "Explore moon-like detail with a sample tiling source. Great for craters.",
        "Moon",
        "duomo",
        ("moon", "craters", "lunar"),
    ),
    _demo(
        "mars-demo",
        "Mars Dune Fields (Demo Tiles)",
        "Pan across patterns reminiscent of martian dunes using demo tiles.",
        "Mars",
        "highsmith",
        ("mars", "dunes", "patterns"),
    ),
    _demo(
        "earth-demo",
        "Earth Swirls (Demo Tiles)",
        "Aesthetic swirls stand in for high-res Earth observation imagery.",
        "Earth",
        "nga",
        ("earth", "ocean", "clouds"),
    ),
    _demo(
        "nebula-demo",
        "Colorful Nebula (Demo Tiles)",
        "A vibrant target to showcase color channels and contrast in zoom.",
        "Deep Space",
        "iod",
        ("nebula", "gas", "clouds"),
    ),
)


def find_dataset(dataset_id: str, datasets: Iterable[Dataset] = SAMPLE_DATASETS) -> Optional[Dataset]:
    return next((dataset for dataset in datasets if dataset.id == dataset_id), None)


def datasets_from_apod(items: Iterable[Mapping[str, Any]]) -> List[Dataset]:
    """Turn normalised APOD entries into single-image datasets (videos are skipped)."""

    datasets: List[Dataset] = []
    for item in items:
        if item.get("media_type") != "image":
            continue
        key = item.get("id") or item.get("date")
        url = item.get("url") or ""
        if not key or not url:
            continue
        datasets.append(
            Dataset(
                id=f"nasa-{key}",
                title=str(item.get("title") or key),
                description=str(item.get("explanation") or ""),
                category="NASA APOD",
                thumbnail_url=str(item.get("thumbnail_url") or url),
                tags=("nasa", "apod"),
                image_url=str(url),
            )
        )
    return datasets
