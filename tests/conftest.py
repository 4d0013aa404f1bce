"""Shared test fixtures for taskassist."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from taskassist.state import AppStateContainer, MutationJournal
from taskassist.store import EntityStore
from taskassist.sync.models import SyncConfig


@pytest.fixture(autouse=True)
def _no_env_session(monkeypatch):
    """Keep a developer's real session out of the tests."""
    monkeypatch.delenv("TASKASSIST_TOKEN", raising=False)
    monkeypatch.delenv("TASKASSIST_PROVIDER", raising=False)


@pytest.fixture
def app_home(tmp_path: Path) -> Path:
    """Provide a temporary app home directory."""
    home = tmp_path / ".taskassist"
    home.mkdir()
    return home


@pytest.fixture
def journal() -> MutationJournal:
    return MutationJournal()


@pytest.fixture
def store(app_home: Path, journal: MutationJournal) -> EntityStore:
    return EntityStore(app_home, journal=journal)


@pytest.fixture
def app_state() -> AppStateContainer:
    return AppStateContainer()


@pytest.fixture
def fast_config() -> SyncConfig:
    """Sync config with a short debounce so timer tests stay quick."""
    return SyncConfig(debounce_ms=50)


class FakeGist:
    """In-memory GitHub gist API served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.gists: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None
        self.updated_at = "2024-05-01T12:00:00Z"
        self._next = 1

    def _payload(self, gist_id: str) -> dict:
        gist = self.gists[gist_id]
        return {
            "id": gist_id,
            "description": gist["description"],
            "updated_at": self.updated_at,
            "truncated": False,
            "files": {
                name: {
                    "content": body,
                    "raw_url": f"https://gist.example/raw/{gist_id}/{name}",
                    "truncated": False,
                }
                for name, body in gist["files"].items()
            },
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"message": "boom"})

        path = request.url.path
        if request.method == "GET" and path == "/gists":
            return httpx.Response(200, json=[self._payload(g) for g in self.gists])
        if request.method == "POST" and path == "/gists":
            body = json.loads(request.content)
            gist_id = f"g{self._next}"
            self._next += 1
            self.gists[gist_id] = {
                "description": body["description"],
                "files": {n: f["content"] for n, f in body["files"].items()},
            }
            return httpx.Response(201, json=self._payload(gist_id))
        if path.startswith("/raw/"):
            _, _, gist_id, name = path.split("/", 3)
            return httpx.Response(200, text=self.gists[gist_id]["files"][name])
        if path.startswith("/gists/"):
            gist_id = path.rsplit("/", 1)[-1]
            if gist_id not in self.gists:
                return httpx.Response(404, json={"message": "Not Found"})
            if request.method == "PATCH":
                body = json.loads(request.content)
                for name, entry in body["files"].items():
                    self.gists[gist_id]["files"][name] = entry["content"]
            return httpx.Response(200, json=self._payload(gist_id))
        return httpx.Response(404, json={"message": "Not Found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def content(self, file_name: str = "task_assistant_data.json") -> str:
        (gist,) = self.gists.values()
        return gist["files"][file_name]


@pytest.fixture
def fake_gist() -> FakeGist:
    return FakeGist()

