"""Flask application exposing the annotation API and the enhancement proxy."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, Flask, Response, current_app, jsonify, request, send_from_directory

from annotation_model import annotation_from_dict, annotation_to_dict
from cosmos_errors import StoreCorrupted, UpstreamUnavailable, ValidationError
from cosmos_server.annotation_store import AnnotationStore
from cosmos_server.apod import ApodClient, clamp_count
from cosmos_server.enhance import TileEnhancer, parse_scale
from cosmos_server.settings import ServerSettings, load_server_settings

_LOGGER = logging.getLogger("Cosmos.Server.Api")

_EXT_KEY = "cosmos"


def _services() -> Dict[str, Any]:
    return current_app.extensions[_EXT_KEY]


def _store() -> AnnotationStore:
    return _services()["store"]


def _missing_fields() -> Tuple[Response, int]:
    return jsonify({"error": "Missing fields"}), 400


def _read_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _read_mutation() -> Optional[Tuple[str, Dict[str, Any]]]:
    body = _read_body()
    dataset_id = body.get("datasetId")
    annotation = body.get("annotation")
    if not isinstance(dataset_id, str) or not dataset_id or not isinstance(annotation, dict) or not annotation:
        return None
    return dataset_id, annotation


annotations_bp = Blueprint("annotations", __name__)
enhance_bp = Blueprint("enhance", __name__)


@annotations_bp.get("/annotations")
def list_annotations():
    dataset_id = request.args.get("datasetId")
    store = _store()
    if dataset_id:
        return jsonify([annotation_to_dict(item) for item in store.list(dataset_id)])
    return jsonify(
        {key: [annotation_to_dict(item) for item in items] for key, items in store.all().items()}
    )


@annotations_bp.post("/annotations")
def create_annotation():
    mutation = _read_mutation()
    if mutation is None:
        return _missing_fields()
    dataset_id, payload = mutation
    stored = _store().create(dataset_id, annotation_from_dict(payload))
    _LOGGER.info("Stored %s annotation %s for %s", stored.kind, stored.id, dataset_id)
    return jsonify({"ok": True})


@annotations_bp.put("/annotations")
def update_annotation():
    mutation = _read_mutation()
    if mutation is None or not mutation[1].get("id"):
        return _missing_fields()
    dataset_id, payload = mutation
    updated = _store().update(dataset_id, payload)
    _LOGGER.info("Updated annotation %s for %s", updated.id, dataset_id)
    return jsonify({"ok": True})


@annotations_bp.delete("/annotations")
def delete_annotation():
    dataset_id = request.args.get("datasetId")
    annotation_id = _read_body().get("id")
    if not dataset_id or not isinstance(annotation_id, str) or not annotation_id:
        return _missing_fields()
    removed = _store().delete(dataset_id, annotation_id)
    _LOGGER.info("Delete %s from %s (removed=%s)", annotation_id, dataset_id, removed)
    return jsonify({"ok": True})


@enhance_bp.get("/enhance")
def enhance_tile():
    url = request.args.get("url")
    if not url:
        return jsonify({"error": "Missing url"}), 400
    scale = parse_scale(request.args.get("scale"))
    enhancer: TileEnhancer = _services()["enhancer"]
    try:
        result = enhancer.enhance_tile(url, scale=scale, model=request.args.get("model"))
    except UpstreamUnavailable as exc:
        _LOGGER.warning("Original tile unavailable for %s: %s", url, exc)
        return jsonify({"error": "Upstream error"}), 502
    response = Response(result.body, status=200, content_type=result.content_type)
    response.headers["Cache-Control"] = result.cache_control
    response.headers["X-Enhanced"] = "1" if result.enhanced else "0"
    response.headers["X-Enhance-Scale"] = str(result.scale)
    return response


@enhance_bp.get("/ai/enhance")
def enhance_image():
    url = request.args.get("url")
    if not url:
        return jsonify({"error": "Missing url"}), 400
    settings: ServerSettings = _services()["settings"]
    if not settings.hf_api_token:
        return jsonify({"error": "HF_API_TOKEN not set"}), 503
    enhancer: TileEnhancer = _services()["enhancer"]
    try:
        public_url = enhancer.enhance_to_file(url, model=request.args.get("model"))
    except UpstreamUnavailable as exc:
        _LOGGER.warning("Enhance failure for %s: %s", url, exc)
        return jsonify({"error": "Enhance failure"}), 502
    return jsonify({"url": public_url})


@enhance_bp.get("/enhanced/<path:filename>")
def serve_enhanced(filename: str):
    settings: ServerSettings = _services()["settings"]
    return send_from_directory(settings.enhanced_dir.resolve(), filename)


@enhance_bp.get("/nasa/apod")
def nasa_apod():
    client: ApodClient = _services()["apod"]
    if not client.configured:
        return jsonify({"error": "NASA_API_KEY not set"}), 503
    try:
        items = client.fetch(clamp_count(request.args.get("count", "6")))
    except UpstreamUnavailable as exc:
        _LOGGER.warning("APOD fetch failed: %s", exc)
        return jsonify({"error": "NASA API error"}), 502
    return jsonify(items)


def _handle_validation(exc: ValidationError):
    return jsonify({"error": str(exc)}), 400


def _handle_unavailable(exc: UpstreamUnavailable):
    level = logging.ERROR if isinstance(exc, StoreCorrupted) else logging.WARNING
    _LOGGER.log(level, "Request failed: %s", exc)
    return jsonify({"error": str(exc)}), 503


def create_app(
    settings: Optional[ServerSettings] = None,
    *,
    store: Optional[AnnotationStore] = None,
    enhancer: Optional[TileEnhancer] = None,
    apod_client: Optional[ApodClient] = None,
) -> Flask:
    resolved = settings or load_server_settings()
    app = Flask("cosmos_server")
    app.config["DEBUG"] = resolved.debug
    app.extensions[_EXT_KEY] = {
        "settings": resolved,
        "store": store or AnnotationStore(resolved.annotations_path),
        "enhancer": enhancer or TileEnhancer(resolved),
        "apod": apod_client or ApodClient(resolved),
    }
    prefix = resolved.url_prefix or None
    app.register_blueprint(annotations_bp, url_prefix=prefix)
    app.register_blueprint(enhance_bp, url_prefix=prefix)
    app.register_error_handler(ValidationError, _handle_validation)
    app.register_error_handler(UpstreamUnavailable, _handle_unavailable)
    _LOGGER.debug("Annotation API ready (store=%s, prefix=%r)", resolved.annotations_path, resolved.url_prefix)
    return app
