from __future__ import annotations

import pytest
import requests

from annotation_model import PointAnnotation
from cosmos_errors import UpstreamUnavailable, ValidationError
from cosmos_viewer.annotation_client import AnnotationClient
from cosmos_viewer.client_config import ViewerSettings


class _Response:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("empty body")
        return self._payload


class _Session:
    def __init__(self, *outcomes):
        self.headers = {}
        self.outcomes = list(outcomes)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def close(self):
        pass


SETTINGS = ViewerSettings(api_base_url="http://api.test", request_timeout=2.0)


def test_list_parses_and_skips_malformed_entries():
    session = _Session(
        _Response(
            200,
            [
                {"id": "pin-1", "type": "point", "xpct": 0.25, "ypct": 0.4, "label": "Dust devil"},
                {"id": "", "type": "point", "xpct": 0.1, "ypct": 0.1},
            ],
        )
    )
    client = AnnotationClient(SETTINGS, session)
    annotations = client.list("mars-demo")
    assert annotations == [PointAnnotation("pin-1", 0.25, 0.4, "Dust devil")]
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "http://api.test/annotations")
    assert kwargs["params"] == {"datasetId": "mars-demo"}
    assert kwargs["timeout"] == 2.0
    assert session.headers["User-Agent"].startswith("CosmosExplorer/")


def test_list_not_found_is_empty():
    assert AnnotationClient(SETTINGS, _Session(_Response(404))).list("mars-demo") == []


def test_create_sends_wire_shape():
    session = _Session(_Response(200, {"ok": True}))
    AnnotationClient(SETTINGS, session).create("mars-demo", PointAnnotation("pin-1", 0.25, 0.4, "Dust devil"))
    method, _url, kwargs = session.calls[0]
    assert method == "POST"
    assert kwargs["json"] == {
        "datasetId": "mars-demo",
        "annotation": {"id": "pin-1", "type": "point", "xpct": 0.25, "ypct": 0.4, "label": "Dust devil"},
    }


def test_delete_sends_query_and_body():
    session = _Session(_Response(200, {"ok": True}))
    AnnotationClient(SETTINGS, session).delete("mars-demo", "pin-1")
    method, _url, kwargs = session.calls[0]
    assert method == "DELETE"
    assert kwargs["params"] == {"datasetId": "mars-demo"}
    assert kwargs["json"] == {"id": "pin-1"}


@pytest.mark.parametrize(
    "outcome",
    [requests.ConnectionError("refused"), requests.Timeout("slow"), _Response(503), _Response(500), _Response(404)],
)
def test_write_failures_are_upstream_unavailable(outcome):
    client = AnnotationClient(SETTINGS, _Session(outcome))
    with pytest.raises(UpstreamUnavailable):
        client.update("mars-demo", PointAnnotation("pin-1", 0.1, 0.1))


def test_bad_request_is_validation_error():
    client = AnnotationClient(SETTINGS, _Session(_Response(400, {"error": "Missing fields"})))
    with pytest.raises(ValidationError, match="Missing fields"):
        client.create("mars-demo", PointAnnotation("pin-1", 0.1, 0.1))


def test_unparseable_list_is_upstream_unavailable():
    with pytest.raises(UpstreamUnavailable):
        AnnotationClient(SETTINGS, _Session(_Response(200))).list("mars-demo")
    with pytest.raises(UpstreamUnavailable):
        AnnotationClient(SETTINGS, _Session(_Response(200, {"not": "a list"}))).list("mars-demo")
