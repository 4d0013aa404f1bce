"""Tests for the Google Drive and GitHub Gist backends (mocked HTTP)."""

from __future__ import annotations

import json

import httpx
import pytest

from taskassist.errors import RemoteUnavailableError
from taskassist.sync.backends import (
    GistBackend,
    GoogleDriveBackend,
    create_backend,
)
from taskassist.sync.models import BlobHandle, ProviderId, SyncConfig


class TestFactory:
    def test_known_providers(self):
        assert isinstance(create_backend("google"), GoogleDriveBackend)
        assert isinstance(create_backend(ProviderId.GITHUB), GistBackend)

    def test_local_only_providers(self):
        assert create_backend("local") is None
        assert create_backend("yandex") is None

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_backend("dropbox")


class TestGoogleDrive:
    @pytest.mark.asyncio
    async def test_locate_found(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"files": [
                {"id": "f1", "modifiedTime": "2024-05-01T12:00:00.000Z"},
            ]})

        backend = GoogleDriveBackend(transport=httpx.MockTransport(handler))
        handle = await backend.locate("tok")

        assert handle.blob_id == "f1"
        assert handle.updated_at == 1714564800000
        assert seen[0].headers["Authorization"] == "Bearer tok"
        assert seen[0].url.params["spaces"] == "appDataFolder"
        assert "task_assistant_data.json" in seen[0].url.params["q"]

    @pytest.mark.asyncio
    async def test_locate_missing(self):
        backend = GoogleDriveBackend(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"files": []}))
        )
        assert await backend.locate("tok") is None

    @pytest.mark.asyncio
    async def test_locate_failure_raises(self):
        """A failed lookup must not look like 'no file' (that would duplicate it)."""
        backend = GoogleDriveBackend(transport=httpx.MockTransport(
            lambda r: httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})
        ))
        with pytest.raises(RemoteUnavailableError) as info:
            await backend.locate("bad")
        assert info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_read_media(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/files/f1")
            assert request.url.params["alt"] == "media"
            return httpx.Response(200, text='{"tasks": []}')

        backend = GoogleDriveBackend(transport=httpx.MockTransport(handler))
        assert await backend.read("tok", BlobHandle(blob_id="f1")) == '{"tasks": []}'

    @pytest.mark.asyncio
    async def test_write_creates_multipart(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "new", "modifiedTime": "2024-05-01T12:00:00Z"})

        backend = GoogleDriveBackend(transport=httpx.MockTransport(handler))
        handle = await backend.write("tok", '{"tasks": []}', None)

        request = seen[0]
        assert handle.blob_id == "new"
        assert request.method == "POST"
        assert request.url.params["uploadType"] == "multipart"
        assert request.headers["Content-Type"].startswith("multipart/related; boundary=")
        body = request.content.decode()
        assert '"appDataFolder"' in body
        assert '{"tasks": []}' in body

    @pytest.mark.asyncio
    async def test_write_overwrites_in_place(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "f1"})

        backend = GoogleDriveBackend(transport=httpx.MockTransport(handler))
        await backend.write("tok", "payload", BlobHandle(blob_id="f1"))

        assert seen[0].method == "PATCH"
        assert seen[0].url.path.endswith("/files/f1")
        assert seen[0].url.params["uploadType"] == "media"
        assert seen[0].content == b"payload"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        backend = GoogleDriveBackend(transport=httpx.MockTransport(handler))
        with pytest.raises(RemoteUnavailableError):
            await backend.locate("tok")

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        backend = GoogleDriveBackend(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>"))
        )
        with pytest.raises(RemoteUnavailableError):
            await backend.locate("tok")

    @pytest.mark.asyncio
    async def test_custom_file_name(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"files": []})

        backend = GoogleDriveBackend(
            config=SyncConfig(file_name="other.json"),
            transport=httpx.MockTransport(handler),
        )
        await backend.locate("tok")
        assert "other.json" in seen[0].url.params["q"]


class TestGist:
    @pytest.mark.asyncio
    async def test_create_then_find_by_description(self, fake_gist):
        backend = GistBackend(transport=fake_gist.transport())
        assert await backend.locate("tok") is None

        written = await backend.write("tok", "hello", None)
        assert backend.gist_id == written.blob_id
        assert fake_gist.content() == "hello"

        post = next(r for r in fake_gist.requests if r.method == "POST")
        assert post.headers["Authorization"] == "token tok"
        assert json.loads(post.content)["public"] is False

        fresh = GistBackend(transport=fake_gist.transport())
        handle = await fresh.locate("tok")
        assert handle.blob_id == written.blob_id
        assert await fresh.read("tok", handle) == "hello"

    @pytest.mark.asyncio
    async def test_overwrite_uses_patch(self, fake_gist):
        backend = GistBackend(transport=fake_gist.transport())
        first = await backend.write("tok", "v1", None)
        await backend.write("tok", "v2", await backend.locate("tok"))

        assert fake_gist.content() == "v2"
        assert len(fake_gist.gists) == 1
        assert any(r.method == "PATCH" and r.url.path == f"/gists/{first.blob_id}"
                   for r in fake_gist.requests)

    @pytest.mark.asyncio
    async def test_cached_id_gone_falls_back_to_search(self, fake_gist):
        backend = GistBackend(transport=fake_gist.transport())
        written = await backend.write("tok", "data", None)

        stale = GistBackend(transport=fake_gist.transport(), gist_id="deleted")
        handle = await stale.locate("tok")
        assert handle.blob_id == written.blob_id
        assert stale.gist_id == written.blob_id

    @pytest.mark.asyncio
    async def test_truncated_content_uses_raw_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "raw.example":
                return httpx.Response(200, text="full content")
            return httpx.Response(200, json={
                "id": "g1",
                "updated_at": "2024-05-01T12:00:00Z",
                "truncated": False,
                "files": {"task_assistant_data.json": {
                    "content": "full con",
                    "truncated": True,
                    "raw_url": "https://raw.example/g1/file",
                }},
            })

        backend = GistBackend(transport=httpx.MockTransport(handler), gist_id="g1")
        handle = await backend.locate("tok")
        assert handle.truncated
        assert await backend.read("tok", handle) == "full content"

    @pytest.mark.asyncio
    async def test_gist_without_file_reads_empty(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "g1", "files": {}})

        backend = GistBackend(transport=httpx.MockTransport(handler), gist_id="g1")
        handle = await backend.locate("tok")
        assert await backend.read("tok", handle) == ""

    @pytest.mark.asyncio
    async def test_provider_error(self, fake_gist):
        fake_gist.fail_with = 500
        backend = GistBackend(transport=fake_gist.transport())
        with pytest.raises(RemoteUnavailableError) as info:
            await backend.write("tok", "x", None)
        assert info.value.status_code == 500
