"""Source snapshot model.

A snapshot is an immutable, content-addressed directory tree.  The digest is
computed over relative paths, file modes and file contents, so two trees
with the same content share one digest and one directory in the store.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class SourceSnapshot(BaseModel):
    """Reference to a stored directory tree."""

    model_config = ConfigDict(frozen=True)

    digest: str = Field(description="sha256 hex digest of the tree content")
    root: Path = Field(description="Location of the tree inside the snapshot store")

    @property
    def id(self) -> str:
        return f"sha256:{self.digest}"

    @property
    def short_id(self) -> str:
        return self.digest[:12]

    def __str__(self) -> str:
        return self.id


class SnapshotEntry(BaseModel):
    """One file or symlink inside a snapshot, as seen by the tracker upload."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="POSIX path relative to the snapshot root")
    executable: bool = False
    symlink_target: str | None = None
