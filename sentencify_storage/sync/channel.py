"""
Cross-instance broadcast channel.

Instances of the same project share one SQLite file. The channel is an
append-only ``sync_events`` table in that file: publishing inserts a row,
every subscribed instance polls for rows newer than the last one it saw.
Only the notification travels through the channel; data is always reloaded
from the durable store.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

import aiosqlite

from ..durable.base import SyncMessage
from ..durable.schema import Domain
from ..models import now_ms

logger = logging.getLogger(__name__)

SYNC_EVENTS_SQL = """
CREATE TABLE IF NOT EXISTS sync_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    instance_id TEXT NOT NULL,
    domain TEXT,
    action TEXT NOT NULL,
    timestamp INTEGER NOT NULL
)
"""

# Events older than this are deleted when publishing
EVENT_RETENTION_MS = 10 * 60 * 1000

MessageHandler = Callable[[SyncMessage], Awaitable[None] | None]


class SyncChannel:
    """Pub/sub over a table shared by every instance opening the same file."""

    def __init__(self, path: str | Path, instance_id: str, poll_ms: int = 500):
        """
        Initialize channel.

        Args:
            path: SQLite file shared by the instances
            instance_id: This instance's id; its own events are never delivered back
            poll_ms: Poll interval
        """
        self.path = path
        self.instance_id = instance_id
        self.poll_ms = poll_ms

        self.conn: aiosqlite.Connection | None = None
        self._last_event_id = 0
        self._last_timestamps: dict[str | None, int] = {}
        self._handler: MessageHandler | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._running = False

    async def open(self) -> None:
        """Open the channel; only events published from now on are delivered."""
        if self.conn is not None:
            return

        self.conn = await aiosqlite.connect(str(self.path), isolation_level=None)
        await self.conn.execute("PRAGMA busy_timeout = 5000")
        await self.conn.execute(SYNC_EVENTS_SQL)
        async with self.conn.execute("SELECT COALESCE(MAX(id), 0) FROM sync_events") as cursor:
            row = await cursor.fetchone()
            self._last_event_id = int(row[0]) if row else 0

    async def publish(self, message: SyncMessage) -> None:
        """Broadcast a message to the other instances."""
        if self.conn is None:
            raise RuntimeError("Sync channel not open")

        await self.conn.execute(
            "INSERT INTO sync_events (instance_id, domain, action, timestamp) VALUES (?, ?, ?, ?)",
            (
                message.instance_id or self.instance_id,
                message.domain.value if message.domain else None,
                message.action,
                message.timestamp,
            ),
        )
        await self.conn.execute(
            "DELETE FROM sync_events WHERE timestamp < ?", (now_ms() - EVENT_RETENTION_MS,)
        )

    async def start(self, handler: MessageHandler) -> None:
        """Start delivering messages from other instances to ``handler``."""
        if self._running:
            return

        await self.open()
        self._handler = handler
        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.debug(f"Sync channel started for instance {self.instance_id}")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Sync channel poll failed: {e}")
            await asyncio.sleep(self.poll_ms / 1000)

    async def poll(self) -> int:
        """Deliver every new message once. Returns the number delivered."""
        if self.conn is None:
            return 0

        async with self.conn.execute(
            "SELECT id, instance_id, domain, action, timestamp FROM sync_events "
            "WHERE id > ? ORDER BY id",
            (self._last_event_id,),
        ) as cursor:
            rows = await cursor.fetchall()

        delivered = 0
        for event_id, instance_id, domain, action, timestamp in rows:
            self._last_event_id = event_id
            if instance_id == self.instance_id:
                continue
            if self._last_timestamps.get(domain) == timestamp:
                logger.debug(f"Duplicate sync event ignored: {domain} @ {timestamp}")
                continue
            self._last_timestamps[domain] = timestamp

            try:
                parsed_domain = Domain(domain) if domain else None
            except ValueError:
                logger.debug(f"Sync event for unknown domain ignored: {domain}")
                continue

            message = SyncMessage(
                action=action, timestamp=timestamp, domain=parsed_domain, instance_id=instance_id
            )
            if self._handler is not None:
                result = self._handler(message)
                if inspect.isawaitable(result):
                    await result
            delivered += 1
        return delivered

    async def close(self) -> None:
        """Stop polling and close the connection."""
        self._running = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        if self.conn is not None:
            await self.conn.close()
            self.conn = None
