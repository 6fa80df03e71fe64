"""Execution engine interface and the scratch-directory evaluation loop.

The engine evaluates ``Container`` descriptions.  ``ScratchEngine`` holds the
logic shared by every adapter:

1. **Materialize**: copy each mounted snapshot into a private scratch
   directory, so stored snapshots are never touched.
2. **Execute**: run the exec steps in order through ``_run_exec``; a failing
   step stops the evaluation.
3. **Export**: optionally import a directory of the final state back into the
   snapshot store as a new snapshot, leaving out excluded paths.
4. **Clean up**: remove the scratch directory, even when cancelled.

State only survives between steps inside mounted directories (and cache
volumes), which is all the pipeline relies on: ``npm install`` writes
``node_modules`` into the mounted source tree and later steps find it there.
"""

from __future__ import annotations

import contextlib
import logging
import shutil
import tempfile
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

import anyio
from anyio import to_thread

from hellodagger.engine.container import Container, Exec
from hellodagger.models.snapshot import SourceSnapshot
from hellodagger.store.local import SnapshotStore

logger = logging.getLogger(__name__)

Mounts = dict[PurePosixPath, Path]
"""Container path -> host directory backing it during an evaluation."""


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class EngineError(RuntimeError):
    """Raised when a container cannot be evaluated as described."""


class CommandError(EngineError):
    """Raised when a command exits non-zero.  Carries the captured output."""

    def __init__(self, args: tuple[str, ...], exit_code: int, stdout: str, stderr: str) -> None:
        self.command = args
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(self._render())

    def _render(self) -> str:
        lines = [f"command {' '.join(self.command)!r} exited with code {self.exit_code}"]
        if self.stdout.strip():
            lines.append(f"stdout:\n{self.stdout.rstrip()}")
        if self.stderr.strip():
            lines.append(f"stderr:\n{self.stderr.rstrip()}")
        return "\n".join(lines)

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return "\n".join(part for part in (self.stdout.rstrip(), self.stderr.rstrip()) if part)


class EnvironmentSetupError(CommandError):
    """Raised when preparing the environment (image start, dependency install) fails."""


class PublishConflictError(EngineError):
    """Raised when the publish address already holds an image."""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    stdout: str
    stderr: str


@dataclass(frozen=True)
class Evaluation:
    """Outcome of evaluating a container.

    ``stdout``/``stderr``/``exit_code`` come from the last step (empty and 0
    when there are no steps).  ``directory`` is set when an export path was
    requested.
    """

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    directory: SourceSnapshot | None = None


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ExecutionEngine(Protocol):
    """Runs container descriptions and publishes images."""

    def container(self) -> Container:
        """Return an empty container bound to this engine."""
        ...

    async def evaluate(
        self, container: Container, *, export: str | None = None, exclude: Sequence[str] = ()
    ) -> Evaluation:
        """Run every step of ``container``; export ``export`` (minus ``exclude``) as a snapshot if given."""
        ...

    async def publish(self, container: Container, address: str) -> str:
        """Build ``container`` into an image, push it and return the pushed reference."""
        ...


# ---------------------------------------------------------------------------
# Scratch evaluation
# ---------------------------------------------------------------------------


class ScratchEngine:
    """Base engine evaluating containers against scratch copies of their mounts.

    Subclasses implement ``_run_exec`` (and ``publish``).
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        scratch_root: str | Path | None = None,
        command_timeout: float | None = None,
    ) -> None:
        self.store = store
        self.scratch_root = Path(scratch_root) if scratch_root else None
        self.command_timeout = command_timeout

    def container(self) -> Container:
        return Container(engine=self)

    async def evaluate(
        self, container: Container, *, export: str | None = None, exclude: Sequence[str] = ()
    ) -> Evaluation:
        async with self._scratch(container) as mounts:
            result = ExecResult(exit_code=0, stdout="", stderr="")
            for step in container.execs:
                logger.info("exec %s (image=%s, workdir=%s)", " ".join(step.args), container.image, container.workdir)
                with anyio.fail_after(self.command_timeout):
                    result = await self._run_exec(container, step, mounts)
                self._check(step, result)

            exported = None
            if export is not None:
                host_path = resolve_host_path(mounts, container.resolve_path(export))
                if not host_path.is_dir():
                    msg = f"{export} is not a directory after evaluation"
                    raise EngineError(msg)
                exported = await self.store.import_directory(host_path, exclude=exclude)
                logger.debug("exported %s as %s", export, exported.short_id)

        return Evaluation(stdout=result.stdout, stderr=result.stderr, exit_code=result.exit_code, directory=exported)

    async def publish(self, container: Container, address: str) -> str:
        msg = f"{type(self).__name__} cannot publish images"
        raise EngineError(msg)

    async def _run_exec(self, container: Container, step: Exec, mounts: Mounts) -> ExecResult:
        raise NotImplementedError

    # -- Helpers ---------------------------------------------------------------

    @staticmethod
    def _check(step: Exec, result: ExecResult) -> None:
        if result.exit_code == 0 or not step.expect_success:
            return
        error_cls = EnvironmentSetupError if step.setup else CommandError
        logger.warning("exec %s failed with code %d", " ".join(step.args), result.exit_code)
        raise error_cls(step.args, result.exit_code, result.stdout, result.stderr)

    @contextlib.asynccontextmanager
    async def _scratch(self, container: Container) -> AsyncIterator[Mounts]:
        """Materialize every mounted snapshot into a fresh scratch directory."""
        if self.scratch_root is not None:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
        scratch = Path(await to_thread.run_sync(lambda: tempfile.mkdtemp(prefix="hellodagger-", dir=self.scratch_root)))
        try:
            mounts: Mounts = {}
            for index, (path, snapshot) in enumerate(container.directories):
                host = await self.store.materialize(snapshot, scratch / f"mount-{index}")
                mounts[PurePosixPath(path)] = host.resolve()
            yield mounts
        finally:
            with anyio.CancelScope(shield=True):
                await self._remove_scratch(container, scratch)

    async def _remove_scratch(self, container: Container, scratch: Path) -> None:
        if await to_thread.run_sync(_remove_tree, scratch):
            return
        await self._release_scratch(container, scratch)
        if not await to_thread.run_sync(_remove_tree, scratch):
            logger.warning("could not remove scratch directory %s", scratch)

    async def _release_scratch(self, container: Container, scratch: Path) -> None:
        """Make files the commands created in ``scratch`` removable by this process."""


def _remove_tree(path: Path) -> bool:
    """Remove ``path`` as far as permissions allow; return whether it is gone."""
    shutil.rmtree(path, ignore_errors=True)
    return not path.exists()


def resolve_host_path(mounts: Mounts, container_path: str) -> Path:
    """Map an absolute container path onto the host through the deepest enclosing mount."""
    target = PurePosixPath(container_path)
    best: PurePosixPath | None = None
    for mount_path in mounts:
        if (target == mount_path or target.is_relative_to(mount_path)) and (
            best is None or len(mount_path.parts) > len(best.parts)
        ):
            best = mount_path
    if best is None:
        msg = f"{container_path} is not inside a mounted directory"
        raise EngineError(msg)
    return mounts[best].joinpath(*target.relative_to(best).parts)
