"""Remote issue tracker adapters."""

from hellodagger.tracker.base import IssueNotFoundError, IssueTracker, TrackerError
from hellodagger.tracker.github import GitHubTracker, parse_repository

__all__ = ["GitHubTracker", "IssueNotFoundError", "IssueTracker", "TrackerError", "parse_repository"]
