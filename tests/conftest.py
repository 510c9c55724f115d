from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import requests

from cosmos_server.annotation_store import AnnotationStore
from cosmos_server.settings import ServerSettings


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        *,
        content: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        json_data: Any = None,
    ) -> None:
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self._json = json_data

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", "replace")

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no json body")
        return self._json


class FakeSession:
    """Records calls and replays queued responses (or raises queued exceptions)."""

    def __init__(self) -> None:
        self.headers: Dict[str, str] = {}
        self.calls: List[Dict[str, Any]] = []
        self.get_responses: List[Any] = []
        self.post_responses: List[Any] = []

    def _next(self, queue: List[Any]) -> FakeResponse:
        outcome = queue.pop(0) if queue else FakeResponse(404)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": "GET", "url": url, **kwargs})
        return self._next(self.get_responses)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": "POST", "url": url, **kwargs})
        return self._next(self.post_responses)

    def close(self) -> None:
        pass


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "annotations.json"


@pytest.fixture
def store(store_path: Path) -> AnnotationStore:
    return AnnotationStore(store_path)


@pytest.fixture
def server_settings(tmp_path: Path) -> ServerSettings:
    return ServerSettings(data_dir=tmp_path / "data", static_dir=tmp_path / "public")


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def connection_error() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")


@pytest.fixture
def fake_response():
    return FakeResponse
