"""HTTP client for the annotation API."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import requests

from annotation_model import Annotation, annotation_from_dict, annotation_to_dict
from cosmos_errors import UpstreamUnavailable, ValidationError
from cosmos_viewer.client_config import ViewerSettings
from version import __version__

_LOGGER = logging.getLogger("Cosmos.Viewer.AnnotationClient")
_USER_AGENT = f"CosmosExplorer/{__version__}"


class AnnotationClient:
    """Blocking client; callers run it off the UI thread through a dispatcher."""

    def __init__(self, settings: ViewerSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", _USER_AGENT)

    @property
    def url(self) -> str:
        return self._settings.annotations_url

    def list(self, dataset_id: str) -> List[Annotation]:
        response = self._request("GET", params={"datasetId": dataset_id})
        if response.status_code == 404:
            return []
        payload = self._json(response)
        if not isinstance(payload, list):
            raise UpstreamUnavailable(f"Unexpected annotation list payload for {dataset_id!r}")
        annotations: List[Annotation] = []
        for entry in payload:
            try:
                annotations.append(annotation_from_dict(entry))
            except ValidationError as exc:
                _LOGGER.warning("Skipping malformed annotation in %s: %s", dataset_id, exc)
        return annotations

    def create(self, dataset_id: str, annotation: Annotation) -> None:
        self._request("POST", json={"datasetId": dataset_id, "annotation": annotation_to_dict(annotation)})

    def update(self, dataset_id: str, annotation: Annotation) -> None:
        self._request("PUT", json={"datasetId": dataset_id, "annotation": annotation_to_dict(annotation)})

    def delete(self, dataset_id: str, annotation_id: str) -> None:
        self._request("DELETE", params={"datasetId": dataset_id}, json={"id": annotation_id})

    def close(self) -> None:
        self._session.close()

    def _request(
        self,
        method: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        try:
            response = self._session.request(
                method,
                self.url,
                params=params,
                json=json,
                timeout=self._settings.request_timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f"Annotation API request failed: {exc}") from exc
        if response.status_code == 400:
            raise ValidationError(self._error_message(response))
        if response.status_code >= 500:
            raise UpstreamUnavailable(f"Annotation API returned HTTP {response.status_code}")
        if response.status_code >= 400 and not (method == "GET" and response.status_code == 404):
            raise UpstreamUnavailable(f"Annotation API returned HTTP {response.status_code}")
        return response

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"Unable to parse annotation API response: {exc}") from exc

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return "Annotation rejected"
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
        return "Annotation rejected"
