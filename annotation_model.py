"""Annotation value types and their persisted JSON shape."""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from cosmos_errors import ValidationError

NOTE_KIND = "note"
POINT_KIND = "point"
ANNOTATION_KINDS = (NOTE_KIND, POINT_KIND)

# Variant specific keys in the persisted representation.
NOTE_FIELDS = ("text",)
POINT_FIELDS = ("xpct", "ypct", "label")


@dataclass(frozen=True)
class NoteAnnotation:
    id: str
    text: str
    created_at: Optional[str] = None

    @property
    def kind(self) -> str:
        return NOTE_KIND


@dataclass(frozen=True)
class PointAnnotation:
    """Pin anchored at a fraction of the native image width/height."""

    id: str
    x_fraction: float
    y_fraction: float
    label: str = ""
    created_at: Optional[str] = None

    @property
    def kind(self) -> str:
        return POINT_KIND


Annotation = Union[NoteAnnotation, PointAnnotation]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_annotation_id(kind: str = POINT_KIND) -> str:
    prefix = "pin" if kind == POINT_KIND else "note"
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def with_created_at(annotation: Annotation, created_at: Optional[str] = None) -> Annotation:
    """Return the annotation stamped with a creation time if it has none."""

    if annotation.created_at:
        return annotation
    return replace(annotation, created_at=created_at or utc_timestamp())


def _require_id(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Annotation id is missing or empty")
    return value


def _require_fraction(value: Any, field_name: str) -> float:
    # bool is an int subclass; True/False are never coordinates.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field_name} must be a finite number")
    number = float(value)
    if not math.isfinite(number):
        raise ValidationError(f"{field_name} must be a finite number")
    return number


def _optional_text(value: Any, field_name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    return value


def _optional_timestamp(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds written by older clients.
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc).isoformat()
    raise ValidationError("createdAt must be a timestamp string")


def validate_annotation(annotation: Annotation) -> Annotation:
    """Re-check an in-memory annotation with the same rules as the wire parser."""

    _require_id(annotation.id)
    if isinstance(annotation, PointAnnotation):
        _require_fraction(annotation.x_fraction, "xpct")
        _require_fraction(annotation.y_fraction, "ypct")
        _optional_text(annotation.label, "label")
    elif isinstance(annotation, NoteAnnotation):
        _optional_text(annotation.text, "text")
    else:
        raise ValidationError(f"Unsupported annotation type: {type(annotation).__name__}")
    return annotation


def annotation_from_dict(payload: Mapping[str, Any]) -> Annotation:
    if not isinstance(payload, Mapping):
        raise ValidationError("Annotation must be a JSON object")
    annotation_id = _require_id(payload.get("id"))
    kind = payload.get("type")
    created_at = _optional_timestamp(payload.get("createdAt"))
    if kind == POINT_KIND:
        return PointAnnotation(
            id=annotation_id,
            x_fraction=_require_fraction(payload.get("xpct"), "xpct"),
            y_fraction=_require_fraction(payload.get("ypct"), "ypct"),
            label=_optional_text(payload.get("label"), "label"),
            created_at=created_at,
        )
    if kind == NOTE_KIND:
        return NoteAnnotation(
            id=annotation_id,
            text=_optional_text(payload.get("text"), "text"),
            created_at=created_at,
        )
    raise ValidationError(f"Unknown annotation type: {kind!r}")


def annotation_to_dict(annotation: Annotation) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"id": annotation.id, "type": annotation.kind}
    if isinstance(annotation, PointAnnotation):
        payload["xpct"] = float(annotation.x_fraction)
        payload["ypct"] = float(annotation.y_fraction)
        payload["label"] = annotation.label
    else:
        payload["text"] = annotation.text
    if annotation.created_at:
        payload["createdAt"] = annotation.created_at
    return payload


def merge_annotation_fields(existing: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay ``patch`` on a stored entry.

    Keys unknown to the model survive the merge. When the patch switches the
    annotation type the previous variant's fields are dropped so a note never
    carries stale pin coordinates.
    """

    merged = dict(existing)
    previous_kind = existing.get("type")
    merged.update(patch)
    next_kind = merged.get("type")
    if previous_kind != next_kind:
        stale = POINT_FIELDS if previous_kind == POINT_KIND else NOTE_FIELDS if previous_kind == NOTE_KIND else ()
        for key in stale:
            if key not in patch:
                merged.pop(key, None)
    if not patch.get("createdAt") and existing.get("createdAt"):
        merged["createdAt"] = existing["createdAt"]
    return merged
