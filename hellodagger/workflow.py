"""Issue to pull request workflow.

Strict sequence with an all-or-nothing outcome:

1. fetch the issue,
2. develop its body as the assignment (validated by the session's gate),
3. open a pull request titled after the issue whose body links back to it.

Nothing is written to the tracker unless step 2 returned a validated
snapshot.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hellodagger.models.tracker import Issue

if TYPE_CHECKING:
    from hellodagger.agent.session import AgentSession
    from hellodagger.models.snapshot import SourceSnapshot
    from hellodagger.tracker.base import IssueTracker

logger = logging.getLogger(__name__)


def change_request_body(issue: Issue) -> str:
    """Issue body followed by a closing reference to the issue URL."""
    return f"{issue.body}\n\nCloses {issue.url}"


class IssueWorkflow:
    def __init__(self, session: AgentSession, tracker: IssueTracker, *, default_branch: str = "main") -> None:
        self.session = session
        self.tracker = tracker
        self.default_branch = default_branch

    async def develop_issue(self, issue_id: int, repository: str, source: SourceSnapshot) -> str:
        """Solve an issue with the develop agent and return the pull request URL."""
        issue = await self.tracker.fetch_issue(repository, issue_id)
        logger.info("Developing issue #%d (%s)", issue.number, issue.url)

        feature = await self.session.develop(issue.body, source)

        change = await self.tracker.create_change_request(
            repository,
            issue.title,
            change_request_body(issue),
            feature,
            self.default_branch,
        )
        if change.url is None:
            msg = f"tracker did not return a URL for the pull request on issue #{issue.number}"
            raise RuntimeError(msg)
        return change.url
