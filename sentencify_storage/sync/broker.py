"""
Multi-instance synchronization.

When one instance commits to the durable store, every other open instance of
the same project reloads the affected domain wholesale and replaces its
in-memory projection. There is no merging: the last writer's data is what
everyone reloads.

A reload must never echo back as a new write. Each domain keeps a watermark,
the serialized form of what was last loaded or saved; ``should_persist``
returns False for data equal to it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import json
import logging
import math
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from ..config import StorageConfig
from ..durable.base import DurableStore, SyncMessage
from ..durable.schema import Domain
from ..logging_utils import StorageLoggerAdapter
from ..models import now_ms
from .channel import SyncChannel

logger = logging.getLogger(__name__)

SYNC_ERROR = "Erro ao sincronizar"

Loader = Callable[[], Awaitable[Any]]
Applier = Callable[[Any], Awaitable[None] | None]


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def serialize_projection(data: Any) -> str:
    """Stable serialized form used as the reload watermark."""
    return json.dumps(data, sort_keys=True, default=_json_default)


@dataclass
class _Registration:
    loader: Loader
    apply: Applier


class CrossTabSyncBroker:
    """
    Keeps sibling instances of the same project in step.

    Example:
        >>> broker = CrossTabSyncBroker(store, config)
        >>> broker.register(Domain.MODELS, store.load_models, library.replace_all)
        >>> await broker.start()
        >>> if broker.should_persist(Domain.MODELS, models):
        ...     await store.save_models(models)
        ...     broker.mark_saved(Domain.MODELS, models)
    """

    def __init__(
        self,
        store: DurableStore,
        config: StorageConfig,
        path: str | Path | None = None,
        instance_id: str | None = None,
        on_error: Callable[[str], None] | None = None,
    ):
        """
        Initialize broker.

        Args:
            store: This instance's durable store
            config: Engine configuration (kill-switch, poll and throttle windows)
            path: Shared SQLite file; defaults to the configured durable path
            instance_id: Unique id of this instance (generated when omitted)
            on_error: User-facing reload failure messages
        """
        self.store = store
        self.config = config
        self.path = path or config.durable_path
        self.instance_id = instance_id or uuid.uuid4().hex
        self.on_error = on_error
        self.log = StorageLoggerAdapter(logger, {"instance_id": self.instance_id})

        self.channel: SyncChannel | None = None
        self._registrations: dict[Domain, _Registration] = {}
        self._watermarks: dict[Domain, str] = {}
        self._last_broadcast: dict[Domain | None, float] = {}
        self._trailing: dict[Domain | None, asyncio.Task[None]] = {}
        self._trailing_action: dict[Domain | None, str] = {}
        self._started = False

    @property
    def enabled(self) -> bool:
        """False when the kill-switch is off or the store failed to open."""
        return self.config.durable_store_enabled and self.store.available

    @property
    def started(self) -> bool:
        return self._started

    def register(self, domain: Domain, loader: Loader, apply: Applier) -> None:
        """
        Reload ``domain`` with ``loader`` and hand the result to ``apply``
        whenever another instance commits to it.
        """
        self._registrations[domain] = _Registration(loader, apply)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> bool:
        """Start listening and broadcasting. Returns False when sync is disabled."""
        if self._started:
            return True
        if not self.enabled:
            self.log.info("Cross-instance sync disabled (durable store off or unavailable)")
            return False

        self.channel = SyncChannel(self.path, self.instance_id, self.config.sync_poll_ms)
        try:
            await self.channel.start(self._dispatch)
        except Exception as e:
            self.log.warning(f"Cross-instance sync unavailable: {e}")
            await self.channel.close()
            self.channel = None
            return False

        self.store.set_sync_callback(self._on_message)
        self.store.add_commit_listener(self._on_commit)
        self._started = True
        self.log.info(f"Cross-instance sync started (instance {self.instance_id})")
        return True

    async def stop(self) -> None:
        """Send pending trailing broadcasts, then stop."""
        if not self._started:
            return

        self.store.remove_commit_listener(self._on_commit)
        if self.store.sync_callback == self._on_message:
            self.store.set_sync_callback(None)

        pending = list(self._trailing.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._trailing.clear()

        if self.channel is not None:
            await self.channel.close()
            self.channel = None
        self._started = False
        self.log.info("Cross-instance sync stopped")

    async def __aenter__(self) -> CrossTabSyncBroker:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # =========================================================================
    # Outgoing
    # =========================================================================

    async def _on_commit(self, domain: Domain, action: str) -> None:
        await self.publish(domain, action)

    async def publish(self, domain: Domain | None, action: str) -> None:
        """
        Broadcast a change, throttled per domain.

        A change inside the throttle window schedules one trailing broadcast
        at the end of the window, so the last change is never lost.
        """
        if not self._started:
            return

        loop = asyncio.get_running_loop()
        window = self.config.sync_throttle_ms / 1000
        elapsed = loop.time() - self._last_broadcast.get(domain, -math.inf)

        if elapsed >= window and domain not in self._trailing:
            await self._send(domain, action)
            return

        self._trailing_action[domain] = action
        if domain not in self._trailing:
            delay = max(window - elapsed, 0)
            self._trailing[domain] = asyncio.create_task(self._send_trailing(domain, delay))

    async def _send_trailing(self, domain: Domain | None, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            self._trailing.pop(domain, None)
        await self._send(domain, self._trailing_action.pop(domain, "update"))

    async def _send(self, domain: Domain | None, action: str) -> None:
        if self.channel is None:
            return

        self._last_broadcast[domain] = asyncio.get_running_loop().time()
        message = SyncMessage(
            action=action, timestamp=now_ms(), domain=domain, instance_id=self.instance_id
        )
        try:
            await self.channel.publish(message)
            self.log.debug(f"Broadcast {action} on {domain.value if domain else '*'}")
        except Exception as e:
            self.log.warning(f"Sync broadcast failed: {e}")

    # =========================================================================
    # Incoming
    # =========================================================================

    async def _dispatch(self, message: SyncMessage) -> None:
        """Route channel messages through the store's sync callback slot."""
        callback = self.store.sync_callback
        if callback is None:
            return
        result = callback(message)
        if inspect.isawaitable(result):
            await result

    async def _on_message(self, message: SyncMessage) -> None:
        if message.instance_id == self.instance_id:
            return

        domains = [message.domain] if message.domain else list(self._registrations)
        for domain in domains:
            if domain in self._registrations:
                await self.reload(domain)

    async def reload(self, domain: Domain) -> bool:
        """Reload a domain wholesale and replace the projection. Returns success."""
        registration = self._registrations.get(domain)
        if registration is None or not self.enabled:
            return False

        try:
            data = await registration.loader()
            self._watermarks[domain] = serialize_projection(data)
            result = registration.apply(data)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.log.error(f"Reload of {domain.value} after remote change failed: {e}")
            if self.on_error is not None:
                self.on_error(f"{SYNC_ERROR}: {e}")
            return False

        self.log.debug(f"Reloaded {domain.value} after remote change")
        return True

    # =========================================================================
    # Echo suppression
    # =========================================================================

    def should_persist(self, domain: Domain, data: Any) -> bool:
        """False when ``data`` is exactly what was last loaded or saved."""
        return self._watermarks.get(domain) != serialize_projection(data)

    def mark_saved(self, domain: Domain, data: Any) -> None:
        """Record ``data`` as the domain's current watermark."""
        self._watermarks[domain] = serialize_projection(data)
