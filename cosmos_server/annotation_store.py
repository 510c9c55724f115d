"""Single-document JSON store holding every dataset's annotations.

The whole document is read, one dataset's list is changed, and the whole
document is written back through a temp file plus ``os.replace`` so readers
only ever observe a complete old or a complete new document.

Writers inside one process are serialised by a lock shared by every store
opened on the same path. Separate processes writing the same file are not
coordinated and can still lose each other's changes (last writer wins for
the whole document).
"""
from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from annotation_model import (
    Annotation,
    annotation_from_dict,
    annotation_to_dict,
    merge_annotation_fields,
    utc_timestamp,
    validate_annotation,
    with_created_at,
)
from cosmos_errors import StoreCorrupted, UpstreamUnavailable, ValidationError

_LOGGER = logging.getLogger("Cosmos.Server.AnnotationStore")

DOCUMENT_KEY = "byDataset"

_PATH_LOCKS: Dict[str, threading.RLock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = os.path.normcase(str(path.resolve()))
    with _PATH_LOCKS_GUARD:
        lock = _PATH_LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _PATH_LOCKS[key] = lock
        return lock


def _empty_document() -> Dict[str, Any]:
    return {DOCUMENT_KEY: {}}


Document = Dict[str, Any]
Mutation = Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]]


class AnnotationStore:
    """Durable per-dataset annotation collections backed by one JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = _lock_for(self._path)

    @property
    def path(self) -> Path:
        return self._path

    # Reads ---------------------------------------------------------------

    def list(self, dataset_id: str) -> List[Annotation]:
        """Annotations for ``dataset_id`` in insertion order; empty for unknown datasets."""

        document = self._read_document()
        entries = document[DOCUMENT_KEY].get(dataset_id) or []
        return self._parse_entries(dataset_id, entries)

    def all(self) -> Dict[str, List[Annotation]]:
        document = self._read_document()
        return {
            dataset_id: self._parse_entries(dataset_id, entries)
            for dataset_id, entries in document[DOCUMENT_KEY].items()
        }

    def raw_document(self) -> Document:
        return self._read_document()

    # Writes --------------------------------------------------------------

    def create(self, dataset_id: str, annotation: Annotation) -> Annotation:
        """Append ``annotation``; an entry with the same id is replaced in place."""

        _require_dataset(dataset_id)
        stamped = with_created_at(validate_annotation(annotation))
        payload = annotation_to_dict(stamped)

        def apply(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            index = _index_of(entries, stamped.id)
            if index is None:
                entries.append(payload)
            else:
                _LOGGER.debug("Create for existing id %s in %s replaces entry %d", stamped.id, dataset_id, index)
                entries[index] = payload
            return entries

        self._mutate(dataset_id, apply)
        return stamped

    def update(self, dataset_id: str, annotation: Union[Annotation, Mapping[str, Any]]) -> Annotation:
        """Merge ``annotation`` into the entry with the same id, or append it when absent.

        Accepts a full annotation or a partial wire mapping carrying at least ``id``.
        """

        _require_dataset(dataset_id)
        if isinstance(annotation, Mapping):
            patch = dict(annotation)
            if not isinstance(patch.get("id"), str) or not patch["id"].strip():
                raise ValidationError("Annotation id is missing or empty")
        else:
            patch = annotation_to_dict(validate_annotation(annotation))
        annotation_id = patch["id"]
        result: Dict[str, Annotation] = {}

        def apply(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            index = _index_of(entries, annotation_id)
            if index is None:
                # Permissive path: an update for an unknown id inserts.
                _LOGGER.info("Update for unknown id %s in %s; inserting", annotation_id, dataset_id)
                merged = dict(patch)
                merged.setdefault("createdAt", utc_timestamp())
                parsed = annotation_from_dict(merged)
                entries.append(merged)
            else:
                merged = merge_annotation_fields(entries[index], patch)
                parsed = annotation_from_dict(merged)
                entries[index] = merged
            result["annotation"] = parsed
            return entries

        self._mutate(dataset_id, apply)
        return result["annotation"]

    def delete(self, dataset_id: str, annotation_id: str) -> bool:
        """Remove the entry with ``annotation_id``; returns False (no write) when absent."""

        _require_dataset(dataset_id)
        removed: List[bool] = []

        def apply(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            kept = [entry for entry in entries if not (isinstance(entry, dict) and entry.get("id") == annotation_id)]
            if len(kept) != len(entries):
                removed.append(True)
            return kept

        self._mutate(dataset_id, apply, write_if_unchanged=False)
        return bool(removed)

    # Internal helpers ----------------------------------------------------

    def _mutate(self, dataset_id: str, apply: Mutation, *, write_if_unchanged: bool = True) -> None:
        with self._lock:
            document = self._read_document()
            by_dataset = document[DOCUMENT_KEY]
            original = by_dataset.get(dataset_id)
            entries = copy.deepcopy(original) if isinstance(original, list) else []
            updated = apply(entries)
            if not write_if_unchanged and updated == (original or []):
                return
            by_dataset[dataset_id] = updated
            self._write_document(document)

    def _read_document(self) -> Document:
        with self._lock:
            try:
                raw_text = self._path.read_text(encoding="utf-8")
            except FileNotFoundError:
                document = _empty_document()
                self._write_document(document)
                return document
            except OSError as exc:
                _LOGGER.warning("Failed to read annotation store %s: %s", self._path, exc)
                raise UpstreamUnavailable(f"Annotation store unreadable: {exc}") from exc
        try:
            raw = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            _LOGGER.error("Annotation store %s is not valid JSON: %s", self._path, exc)
            raise StoreCorrupted(f"Annotation store is corrupted: {exc}") from exc
        if not isinstance(raw, dict):
            raise StoreCorrupted("Annotation store root is not an object")
        by_dataset = raw.get(DOCUMENT_KEY)
        if by_dataset is None:
            raw[DOCUMENT_KEY] = {}
        elif not isinstance(by_dataset, dict):
            raise StoreCorrupted(f"Annotation store '{DOCUMENT_KEY}' is not an object")
        return raw

    def _write_document(self, document: Mapping[str, Any]) -> None:
        tmp_name: Optional[str] = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as exc:
            _LOGGER.warning("Failed to write annotation store %s: %s", self._path, exc)
            raise UpstreamUnavailable(f"Annotation store write failed: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    @staticmethod
    def _parse_entries(dataset_id: str, entries: Any) -> List[Annotation]:
        if not isinstance(entries, list):
            _LOGGER.warning("Dataset %s holds a non-list value; treating as empty", dataset_id)
            return []
        parsed: List[Annotation] = []
        for position, entry in enumerate(entries):
            try:
                parsed.append(annotation_from_dict(entry))
            except ValidationError as exc:
                _LOGGER.warning("Skipping malformed annotation %d in %s: %s", position, dataset_id, exc)
        return parsed


def _require_dataset(dataset_id: str) -> None:
    if not isinstance(dataset_id, str) or not dataset_id.strip():
        raise ValidationError("datasetId is missing or empty")


def _index_of(entries: List[Dict[str, Any]], annotation_id: str) -> Optional[int]:
    for index, entry in enumerate(entries):
        if isinstance(entry, dict) and entry.get("id") == annotation_id:
            return index
    return None
