"""
Engine configuration.

Configuration can come from environment variables or from the ``storage``
section of a settings.yaml file:

```yaml
storage:
  data_dir: ~/.sentencify
  durable_store_enabled: true
  quota_bytes: 5242880
  autosave_idle_ms: 1500
  sync_poll_ms: 500
  sync_throttle_ms: 1000
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_DATA_DIR = Path.home() / ".sentencify"

# Browser-class local storage ceiling
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024

SESSION_FILE_NAME = "session.json"
DURABLE_FILE_NAME = "sentencify.db"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class StorageConfig:
    """Configuration for the persistence engine."""

    data_dir: Path = DEFAULT_DATA_DIR

    # Kill-switch: when False only the quota-limited session slot is used
    durable_store_enabled: bool = True

    quota_bytes: int = DEFAULT_QUOTA_BYTES

    # Non-immediate autosave waits this long for the engine to go idle
    autosave_idle_ms: int = 1500

    # Cross-instance sync
    sync_poll_ms: int = 500
    sync_throttle_ms: int = 1000

    # Durable store open retry
    open_max_retries: int = 3
    open_backoff_ms: int = 1000

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()

    @property
    def session_path(self) -> Path:
        """Path of the quota-limited session slot."""
        return self.data_dir / SESSION_FILE_NAME

    @property
    def durable_path(self) -> Path:
        """Path of the durable store shared by every open instance."""
        return self.data_dir / DURABLE_FILE_NAME

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Create config from environment variables."""
        defaults = cls()
        enabled = os.environ.get("SENTENCIFY_DURABLE_STORE")

        return cls(
            data_dir=Path(os.environ.get("SENTENCIFY_DATA_DIR", str(defaults.data_dir))),
            durable_store_enabled=(
                enabled.strip().lower() in _TRUE_VALUES
                if enabled is not None
                else defaults.durable_store_enabled
            ),
            quota_bytes=int(os.environ.get("SENTENCIFY_QUOTA_BYTES", defaults.quota_bytes)),
            autosave_idle_ms=int(
                os.environ.get("SENTENCIFY_AUTOSAVE_IDLE_MS", defaults.autosave_idle_ms)
            ),
            sync_poll_ms=int(os.environ.get("SENTENCIFY_SYNC_POLL_MS", defaults.sync_poll_ms)),
            sync_throttle_ms=int(
                os.environ.get("SENTENCIFY_SYNC_THROTTLE_MS", defaults.sync_throttle_ms)
            ),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> StorageConfig:
        """Create config from the ``storage`` section of a YAML settings file.

        Missing file or missing section yields the defaults. Unknown keys are
        ignored.
        """
        if not path.exists():
            return cls()

        content = yaml.safe_load(path.read_text()) or {}
        section: dict[str, Any] = content.get("storage", {}) or {}
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in section.items() if key in known})
