"""Data models shared across the pipeline, agent and tracker."""

from hellodagger.models.enums import BindingKind, BindingRole, EngineMode
from hellodagger.models.snapshot import SnapshotEntry, SourceSnapshot
from hellodagger.models.tracker import ChangeRequest, Issue

__all__ = [
    # Enums
    "BindingKind",
    "BindingRole",
    # Tracker
    "ChangeRequest",
    "EngineMode",
    "Issue",
    # Snapshot
    "SnapshotEntry",
    "SourceSnapshot",
]
