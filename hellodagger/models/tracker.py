"""Issue tracker data models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from hellodagger.models.snapshot import SourceSnapshot


class Issue(BaseModel):
    """An issue as read from the remote tracker."""

    number: int
    title: str
    body: str = ""
    url: str = Field(description="Human-facing issue URL")


class ChangeRequest(BaseModel):
    """A pull request proposing a snapshot for a target branch.

    ``number`` and ``url`` are assigned by the tracker on submission.
    """

    title: str
    body: str
    target_branch: str
    source: SourceSnapshot
    head_branch: str | None = None
    number: int | None = None
    url: str | None = None
