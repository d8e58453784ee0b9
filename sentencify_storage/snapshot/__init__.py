"""
Project export and import.

Provides:
- ProjectSnapshotCodec: build and import portable project snapshots
- Legacy-shape migration chain
- Local file and remote HTTP transports
"""

from .codec import SNAPSHOT_VERSION, ProjectSnapshotCodec, strip_credentials
from .migrations import MIGRATIONS, Migration, migrate
from .transport import (
    RemoteSnapshotTransport,
    decode_snapshot,
    encode_snapshot,
    read_snapshot_file,
    snapshot_filename,
    write_snapshot_file,
)

__all__ = [
    "MIGRATIONS",
    "Migration",
    "ProjectSnapshotCodec",
    "RemoteSnapshotTransport",
    "SNAPSHOT_VERSION",
    "decode_snapshot",
    "encode_snapshot",
    "migrate",
    "read_snapshot_file",
    "snapshot_filename",
    "strip_credentials",
    "write_snapshot_file",
]
