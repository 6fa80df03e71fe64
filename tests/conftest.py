"""Shared test fixtures: snapshot store, settings and a scripted engine.

No Docker, Node or network required.  ``FakeEngine`` runs the real
scratch-directory evaluation loop but replaces each container command with
a Python handler keyed by the command's argument tuple.  The default
handlers emulate the Node project:

- ``npm install`` creates ``node_modules``,
- ``npm run test:unit run`` fails when a ``FAIL_TESTS`` marker file exists,
- ``npm run build`` writes ``dist/index.html``.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterator
from pathlib import Path

import pytest

from hellodagger.engine.base import ExecResult, Mounts, ScratchEngine, resolve_host_path
from hellodagger.engine.container import Container, Exec
from hellodagger.models.snapshot import SourceSnapshot
from hellodagger.models.tracker import ChangeRequest, Issue
from hellodagger.pipeline import BUILD_COMMAND, INSTALL_COMMAND, TEST_COMMAND, Pipeline
from hellodagger.settings import HelloDaggerSettings, get_settings
from hellodagger.store.local import SnapshotStore
from hellodagger.tracker.base import IssueNotFoundError

Handler = Callable[[Path], ExecResult | Awaitable[ExecResult]]

FAIL_MARKER = "FAIL_TESTS"


# ---------------------------------------------------------------------------
# Default command handlers
# ---------------------------------------------------------------------------


def npm_install(cwd: Path) -> ExecResult:
    (cwd / "node_modules" / "left-pad").mkdir(parents=True, exist_ok=True)
    (cwd / "node_modules" / "left-pad" / "index.js").write_text("module.exports = () => {}\n")
    return ExecResult(exit_code=0, stdout="added 1 package\n", stderr="")


def npm_test(cwd: Path) -> ExecResult:
    if (cwd / FAIL_MARKER).exists():
        return ExecResult(exit_code=1, stdout="Tests  1 failed (1)\n", stderr="AssertionError: expected 2 to be 1\n")
    return ExecResult(exit_code=0, stdout="Tests  1 passed (1)\n", stderr="")


def npm_build(cwd: Path) -> ExecResult:
    (cwd / "dist").mkdir(exist_ok=True)
    (cwd / "dist" / "index.html").write_text("<h1>hello</h1>\n")
    return ExecResult(exit_code=0, stdout="built in 0.1s\n", stderr="")


class FakeEngine(ScratchEngine):
    """Scratch engine whose commands are Python functions of the working directory."""

    def __init__(self, store: SnapshotStore, **kwargs: object) -> None:
        super().__init__(store, **kwargs)  # type: ignore[arg-type]
        self.handlers: dict[tuple[str, ...], Handler] = {
            INSTALL_COMMAND: npm_install,
            TEST_COMMAND: npm_test,
            BUILD_COMMAND: npm_build,
        }
        self.runs: list[tuple[Container, Exec]] = []
        self.publishes: list[tuple[Container, str]] = []

    @property
    def commands(self) -> list[tuple[str, ...]]:
        return [step.args for _container, step in self.runs]

    async def _run_exec(self, container: Container, step: Exec, mounts: Mounts) -> ExecResult:
        self.runs.append((container, step))
        handler = self.handlers.get(step.args)
        if handler is None:
            return ExecResult(exit_code=127, stdout="", stderr=f"sh: {step.args[0]}: not found\n")
        result = handler(resolve_host_path(mounts, container.workdir))
        if inspect.isawaitable(result):
            result = await result
        return result

    async def publish(self, container: Container, address: str) -> str:
        self.publishes.append((container, address))
        return f"{address}@sha256:{'0' * 64}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture
def settings(tmp_path: Path) -> HelloDaggerSettings:
    return HelloDaggerSettings(_env_file=None, data_root=str(tmp_path / "data"))  # type: ignore[call-arg]


@pytest.fixture
def store(settings: HelloDaggerSettings) -> SnapshotStore:
    return SnapshotStore(settings.data_root, prefix=settings.data_prefix)


@pytest.fixture
def make_engine(store: SnapshotStore, tmp_path: Path) -> Callable[..., FakeEngine]:
    def _make(**kwargs: object) -> FakeEngine:
        return FakeEngine(store, scratch_root=tmp_path / "scratch", **kwargs)

    return _make


@pytest.fixture
def engine(make_engine: Callable[..., FakeEngine]) -> FakeEngine:
    return make_engine()


@pytest.fixture
def pipeline(engine: FakeEngine, settings: HelloDaggerSettings) -> Pipeline:
    return Pipeline(engine, settings)


@pytest.fixture
def app_dir(tmp_path: Path) -> Path:
    """A minimal Node project on the host."""
    root = tmp_path / "app"
    (root / "src").mkdir(parents=True)
    (root / "package.json").write_text('{"name": "hello-dagger", "scripts": {"test:unit": "vitest"}}\n')
    (root / "src" / "main.js").write_text("console.log('hello')\n")
    return root


@pytest.fixture
async def source(store: SnapshotStore, app_dir: Path) -> SourceSnapshot:
    return await store.import_directory(app_dir)


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class MemoryTracker:
    """In-memory issue tracker recording every change request."""

    def __init__(self, issues: list[Issue]) -> None:
        self.issues = {issue.number: issue for issue in issues}
        self.changes: list[tuple[str, ChangeRequest]] = []

    async def fetch_issue(self, repository: str, issue_id: int) -> Issue:
        try:
            return self.issues[issue_id]
        except KeyError:
            msg = f"issue #{issue_id} not found in {repository}"
            raise IssueNotFoundError(msg, status_code=404) from None

    async def create_change_request(
        self,
        repository: str,
        title: str,
        body: str,
        snapshot: SourceSnapshot,
        target_branch: str,
    ) -> ChangeRequest:
        number = len(self.changes) + 1
        change = ChangeRequest(
            title=title,
            body=body,
            target_branch=target_branch,
            source=snapshot,
            number=number,
            url=f"https://github.com/{repository}/pull/{number}",
        )
        self.changes.append((repository, change))
        return change


@pytest.fixture
def issue() -> Issue:
    return Issue(
        number=42,
        title="Fix header bug",
        body="Header renders twice on mobile",
        url="https://github.com/octo/app/issues/42",
    )


@pytest.fixture
def tracker(issue: Issue) -> MemoryTracker:
    return MemoryTracker([issue])
