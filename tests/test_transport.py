"""Tests for snapshot file names, local files and the remote transport."""

import json
from datetime import date
from pathlib import Path

import pytest
from aiohttp import test_utils, web

from sentencify_storage.exceptions import MalformedSnapshotError, StorageIOError
from sentencify_storage.snapshot import (
    RemoteSnapshotTransport,
    decode_snapshot,
    read_snapshot_file,
    snapshot_filename,
    write_snapshot_file,
)


class TestSnapshotFilename:
    """Tests for export file naming."""

    def test_with_case_number(self):
        name = snapshot_filename("0001234-56.2024.5.00.0001", date(2024, 3, 9))
        assert name == "sentencify-0001234-56.2024.5.00.0001-2024-03-09.json"

    def test_spaces_and_slashes_replaced(self):
        name = snapshot_filename("RT 123/2024", date(2024, 1, 1))
        assert name == "sentencify-RT-123-2024-2024-01-01.json"

    def test_without_case_number(self):
        assert snapshot_filename("", date(2024, 1, 1)) == "sentencify-projeto-2024-01-01.json"
        assert snapshot_filename("   ", date(2024, 1, 1)) == "sentencify-projeto-2024-01-01.json"

    def test_defaults_to_today(self):
        assert snapshot_filename(None).startswith("sentencify-projeto-")


class TestSnapshotFiles:
    """Tests for reading and writing snapshot files."""

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path: Path):
        snapshot = {"version": "2.0", "processoNumero": "123", "anonymizationNames": "João"}

        path = await write_snapshot_file(tmp_path / "exports" / "p.json", snapshot)

        assert path.exists()
        assert "João" in path.read_text(encoding="utf-8")
        assert await read_snapshot_file(path) == snapshot

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path):
        with pytest.raises(StorageIOError):
            await read_snapshot_file(tmp_path / "nope.json")

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "broken.json"
        path.write_text("{ not json")

        with pytest.raises(MalformedSnapshotError):
            await read_snapshot_file(path)

    def test_top_level_must_be_object(self):
        with pytest.raises(MalformedSnapshotError):
            decode_snapshot("[1, 2, 3]")


@pytest.fixture
async def remote_server():
    """In-memory document store speaking the remote transport's protocol."""
    files: dict[str, str] = {}
    seen_auth: list[str | None] = []

    @web.middleware
    async def record_auth(request, handler):
        seen_auth.append(request.headers.get("Authorization"))
        return await handler(request)

    async def list_files(request):
        return web.json_response({"files": [{"name": name} for name in sorted(files)]})

    async def put_file(request):
        files[request.match_info["name"]] = await request.text()
        return web.Response(status=204)

    async def get_file(request):
        name = request.match_info["name"]
        if name not in files:
            raise web.HTTPNotFound(text="not found")
        return web.Response(text=files[name], content_type="application/json")

    async def delete_file(request):
        files.pop(request.match_info["name"], None)
        return web.Response(status=204)

    app = web.Application(middlewares=[record_auth])
    app.router.add_get("/projects", list_files)
    app.router.add_put("/projects/{name}", put_file)
    app.router.add_get("/projects/{name}", get_file)
    app.router.add_delete("/projects/{name}", delete_file)

    server = test_utils.TestServer(app)
    await server.start_server()
    yield server, files, seen_auth
    await server.close()


class TestRemoteSnapshotTransport:
    """Tests for the HTTP transport against a local server."""

    @pytest.mark.asyncio
    async def test_save_list_load_delete(self, remote_server):
        server, files, seen_auth = remote_server
        transport = RemoteSnapshotTransport(str(server.make_url("/")), auth_token="token-1")
        snapshot = {"version": "2.0", "processoNumero": "123"}

        await transport.save("sentencify-123-2024-01-01.json", snapshot)
        assert json.loads(files["sentencify-123-2024-01-01.json"]) == snapshot

        assert await transport.list_files() == [{"name": "sentencify-123-2024-01-01.json"}]
        assert await transport.load("sentencify-123-2024-01-01.json") == snapshot

        await transport.delete("sentencify-123-2024-01-01.json")
        assert files == {}
        assert set(seen_auth) == {"Bearer token-1"}

    @pytest.mark.asyncio
    async def test_missing_remote_file(self, remote_server):
        server, _, _ = remote_server
        transport = RemoteSnapshotTransport(str(server.make_url("/")))

        with pytest.raises(StorageIOError):
            await transport.load("missing.json")

    @pytest.mark.asyncio
    async def test_unreachable_server(self):
        transport = RemoteSnapshotTransport("http://127.0.0.1:9", timeout=2.0)

        with pytest.raises(StorageIOError):
            await transport.list_files()
