"""GitHub issue tracker over the REST API.

Issues are read from ``/repos/{repo}/issues/{n}``.  A change request is
created without a local git checkout, through the git data API:

1. resolve the head commit of the target branch,
2. upload every file of the snapshot as a blob,
3. create a full tree (files missing from the snapshot are deleted),
4. commit the tree on top of the target branch head,
5. create the ``{branch_prefix}/{snapshot}`` branch and open the pull request.

An existing branch for the same snapshot makes step 5 fail with a
``TrackerError``; nothing is force-pushed.
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Any

import httpx
from anyio import to_thread
from pydantic import SecretStr

from hellodagger.models.snapshot import SnapshotEntry, SourceSnapshot
from hellodagger.models.tracker import ChangeRequest, Issue
from hellodagger.store.local import SnapshotStore
from hellodagger.tracker.base import IssueNotFoundError, TrackerError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"

_MODE_FILE = "100644"
_MODE_EXECUTABLE = "100755"
_MODE_SYMLINK = "120000"

_REPOSITORY_RE = re.compile(
    r"^(?:(?:https?://|ssh://git@)[^/]+/|git@[^:]+:)?(?P<owner>[\w.-]+)/(?P<name>[\w.-]+?)(?:\.git)?/?$"
)


def parse_repository(repository: str) -> str:
    """Normalize ``owner/name`` or a GitHub URL to ``owner/name``."""
    match = _REPOSITORY_RE.match(repository.strip())
    if match is None:
        msg = f"not a GitHub repository: {repository!r}"
        raise ValueError(msg)
    return f"{match['owner']}/{match['name']}"


def _github_headers(token: str) -> dict[str, str]:
    return {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": "hellodagger/0.1",
    }


def _api_error(method: str, path: str, response: httpx.Response) -> TrackerError:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    message = payload.get("message") if isinstance(payload, dict) else None
    detail = message or response.text.strip() or response.reason_phrase
    msg = f"GitHub API {method} {path} returned {response.status_code}: {detail}"
    return TrackerError(msg, status_code=response.status_code)


class GitHubTracker:
    """``IssueTracker`` implementation for github.com and GitHub Enterprise."""

    def __init__(
        self,
        token: SecretStr | str,
        *,
        store: SnapshotStore,
        base_url: str = GITHUB_API,
        timeout: float = 30.0,
        branch_prefix: str = "hellodagger",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token if isinstance(token, SecretStr) else SecretStr(token)
        self.store = store
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.branch_prefix = branch_prefix
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=_github_headers(self._token.get_secret_value()),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, *, json: Any = None) -> Any:
        try:
            response = await client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            msg = f"GitHub API {method} {path} failed: {exc}"
            raise TrackerError(msg) from exc
        if response.is_error:
            raise _api_error(method, path, response)
        return response.json()

    # -- Issues ----------------------------------------------------------------

    async def fetch_issue(self, repository: str, issue_id: int) -> Issue:
        repo = parse_repository(repository)
        async with self._client() as client:
            try:
                data = await self._request(client, "GET", f"/repos/{repo}/issues/{issue_id}")
            except TrackerError as exc:
                if exc.status_code == httpx.codes.NOT_FOUND:
                    msg = f"issue #{issue_id} not found in {repo}"
                    raise IssueNotFoundError(msg, status_code=exc.status_code) from exc
                raise
        # The issues endpoint also serves pull requests.
        if "pull_request" in data:
            msg = f"#{issue_id} in {repo} is a pull request, not an issue"
            raise IssueNotFoundError(msg)
        logger.info("Fetched issue %s#%d: %s", repo, issue_id, data.get("title"))
        return Issue(
            number=data["number"],
            title=data["title"],
            body=data.get("body") or "",
            url=data["html_url"],
        )

    # -- Pull requests ---------------------------------------------------------

    async def create_change_request(
        self,
        repository: str,
        title: str,
        body: str,
        snapshot: SourceSnapshot,
        target_branch: str,
    ) -> ChangeRequest:
        repo = parse_repository(repository)
        head_branch = f"{self.branch_prefix}/{snapshot.short_id}"
        entries = await self.store.list_entries(snapshot)

        async with self._client() as client:
            base = await self._request(client, "GET", f"/repos/{repo}/git/ref/heads/{target_branch}")
            base_sha = base["object"]["sha"]

            tree = []
            for entry in entries:
                blob_sha = await self._create_blob(client, repo, snapshot, entry)
                tree.append({"path": entry.path, "mode": _entry_mode(entry), "type": "blob", "sha": blob_sha})
            logger.info("Uploaded %d blobs for snapshot %s to %s", len(tree), snapshot.short_id, repo)

            new_tree = await self._request(client, "POST", f"/repos/{repo}/git/trees", json={"tree": tree})
            commit = await self._request(
                client,
                "POST",
                f"/repos/{repo}/git/commits",
                json={"message": title, "tree": new_tree["sha"], "parents": [base_sha]},
            )
            await self._request(
                client,
                "POST",
                f"/repos/{repo}/git/refs",
                json={"ref": f"refs/heads/{head_branch}", "sha": commit["sha"]},
            )
            pull = await self._request(
                client,
                "POST",
                f"/repos/{repo}/pulls",
                json={"title": title, "body": body, "head": head_branch, "base": target_branch},
            )

        logger.info("Opened pull request %s", pull["html_url"])
        return ChangeRequest(
            title=title,
            body=body,
            target_branch=target_branch,
            source=snapshot,
            head_branch=head_branch,
            number=pull["number"],
            url=pull["html_url"],
        )

    async def _create_blob(
        self,
        client: httpx.AsyncClient,
        repo: str,
        snapshot: SourceSnapshot,
        entry: SnapshotEntry,
    ) -> str:
        if entry.symlink_target is not None:
            data = entry.symlink_target.encode("utf-8")
        else:
            data = await to_thread.run_sync((snapshot.root / entry.path).read_bytes)
        blob = await self._request(
            client,
            "POST",
            f"/repos/{repo}/git/blobs",
            json={"content": base64.b64encode(data).decode("ascii"), "encoding": "base64"},
        )
        return blob["sha"]


def _entry_mode(entry: SnapshotEntry) -> str:
    if entry.symlink_target is not None:
        return _MODE_SYMLINK
    return _MODE_EXECUTABLE if entry.executable else _MODE_FILE
