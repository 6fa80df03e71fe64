"""Issue tracker interface.

The tracker is a remote API: it serves issues and accepts change requests
(pull requests) carrying a source snapshot.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from hellodagger.models.snapshot import SourceSnapshot
from hellodagger.models.tracker import ChangeRequest, Issue


class TrackerError(RuntimeError):
    """Raised when the tracker API rejects a request or cannot be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class IssueNotFoundError(TrackerError, LookupError):
    """Raised when the requested issue does not exist (or is not visible)."""


@runtime_checkable
class IssueTracker(Protocol):
    async def fetch_issue(self, repository: str, issue_id: int) -> Issue:
        """Read one issue.  Raises ``IssueNotFoundError`` / ``TrackerError``."""
        ...

    async def create_change_request(
        self,
        repository: str,
        title: str,
        body: str,
        snapshot: SourceSnapshot,
        target_branch: str,
    ) -> ChangeRequest:
        """Propose ``snapshot`` as the new content of ``target_branch``."""
        ...
