"""
Moving project snapshots in and out of the engine.

Provides:
- snapshot_filename: conventional export file name
- write_snapshot_file / read_snapshot_file: local JSON files
- RemoteSnapshotTransport: project files kept on an HTTP document store
"""

from __future__ import annotations

import json
import logging
import re
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

from ..exceptions import MalformedSnapshotError, StorageIOError
from ..file_ops import read_text, write_text_atomic

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_RE = re.compile(r"[\s/]+")


def snapshot_filename(processo_numero: str | None = None, on: date | None = None) -> str:
    """
    Export file name for a project.

    ``sentencify-{processo}-{YYYY-MM-DD}.json``, with spaces and slashes in the
    case number replaced by ``-``; ``sentencify-projeto-{date}.json`` when the
    project has no case number.
    """
    day = (on or datetime.now(UTC).date()).isoformat()
    processo = (processo_numero or "").strip()
    if not processo:
        return f"sentencify-projeto-{day}.json"
    return f"sentencify-{_UNSAFE_FILENAME_RE.sub('-', processo)}-{day}.json"


def encode_snapshot(snapshot: dict[str, Any]) -> str:
    return json.dumps(snapshot, ensure_ascii=False, indent=2)


def decode_snapshot(text: str) -> dict[str, Any]:
    """
    Parse snapshot text.

    Raises:
        MalformedSnapshotError: If the text is not a JSON object
    """
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedSnapshotError(f"invalid JSON: {e}") from e
    if not isinstance(document, dict):
        raise MalformedSnapshotError("top level is not an object")
    return document


async def write_snapshot_file(path: Path, snapshot: dict[str, Any]) -> Path:
    """Write a snapshot as UTF-8 JSON, atomically. Returns the path written."""
    path = Path(path)
    await write_text_atomic(path, encode_snapshot(snapshot))
    logger.info(f"Project exported to {path}")
    return path


async def read_snapshot_file(path: Path) -> dict[str, Any]:
    """
    Read a snapshot file.

    Raises:
        StorageIOError: If the file is missing or unreadable
        MalformedSnapshotError: If the content is not a JSON object
    """
    path = Path(path)
    text = await read_text(path)
    if text is None:
        raise StorageIOError("read_snapshot", str(path), FileNotFoundError(str(path)))
    return decode_snapshot(text)


class RemoteSnapshotTransport:
    """Store project snapshots on a remote HTTP document store.

    The store exposes a flat collection of JSON files:

    - ``GET    {base_url}/projects``          list files
    - ``PUT    {base_url}/projects/{name}``   save (create or replace)
    - ``GET    {base_url}/projects/{name}``   load
    - ``DELETE {base_url}/projects/{name}``   delete

    Example:
        >>> transport = RemoteSnapshotTransport("https://files.example.com", auth_token="...")
        >>> await transport.save(snapshot_filename("0001234-56"), snapshot)
        >>> files = await transport.list_files()
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Root URL of the document store
            auth_token: Optional bearer token
            timeout: Total request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _url(self, name: str | None = None) -> str:
        url = f"{self.base_url}/projects"
        return f"{url}/{quote(name, safe='')}" if name else url

    async def _request(
        self,
        method: str,
        url: str,
        body: str | None = None,
    ) -> str:
        try:
            import aiohttp  # type: ignore[import-not-found]
        except ImportError as e:
            raise ImportError(
                "aiohttp required for remote snapshots. "
                "Install with: pip install sentencify-storage[remote]"
            ) from e

        headers = self._headers()
        if body is not None:
            headers["Content-Type"] = "application/json; charset=utf-8"

        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.request(
                    method, url, headers=headers, data=body.encode("utf-8") if body else None
                ) as response:
                    text = await response.text()
                    if response.status >= 400:
                        raise StorageIOError(
                            f"{method.lower()}_remote_snapshot",
                            url,
                            RuntimeError(f"HTTP {response.status}: {text[:200]}"),
                        )
                    return text
        except aiohttp.ClientError as e:
            raise StorageIOError(f"{method.lower()}_remote_snapshot", url, e) from e

    async def save(self, name: str, snapshot: dict[str, Any]) -> None:
        """Upload a snapshot under ``name``."""
        await self._request("PUT", self._url(name), encode_snapshot(snapshot))
        logger.info(f"Project uploaded: {name}")

    async def load(self, name: str) -> dict[str, Any]:
        """Download and parse a snapshot."""
        return decode_snapshot(await self._request("GET", self._url(name)))

    async def list_files(self) -> list[dict[str, Any]]:
        """Metadata of every stored project file."""
        text = await self._request("GET", self._url())
        try:
            files = json.loads(text) if text.strip() else []
        except json.JSONDecodeError as e:
            raise StorageIOError("list_remote_snapshots", self._url(), e) from e
        if isinstance(files, dict):
            files = files.get("files", [])
        return [f for f in files if isinstance(f, dict)]

    async def delete(self, name: str) -> None:
        """Delete a stored project file."""
        await self._request("DELETE", self._url(name))
        logger.info(f"Project deleted from remote store: {name}")
