"""Content-addressed storage for source snapshots."""

from hellodagger.store.local import SnapshotNotFoundError, SnapshotStore, compute_digest

__all__ = ["SnapshotNotFoundError", "SnapshotStore", "compute_digest"]
