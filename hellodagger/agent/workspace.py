"""Workspace capability exposed to the coding agent.

A workspace wraps a source snapshot and offers the tool operations an agent
may call: read, write and list files, run a shell command, run the unit
tests.  Snapshots are immutable, so every change replaces ``source`` with a
new snapshot; the workspace object itself is the only mutable handle.

Commands run in ``Pipeline.base_env`` over the current snapshot and the
resulting ``/src`` tree, without ``node_modules``, becomes the new snapshot.
Generated and edited files persist between calls; installed dependencies do
not.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hellodagger.engine.base import CommandError
from hellodagger.pipeline import DEPENDENCY_DIR, SOURCE_PATH

if TYPE_CHECKING:
    from hellodagger.models.snapshot import SourceSnapshot
    from hellodagger.pipeline import Pipeline
    from hellodagger.store.local import SnapshotStore

logger = logging.getLogger(__name__)

_MAX_OUTPUT_CHARS = 20_000


class Workspace:
    """Mutable handle over a sequence of snapshots."""

    def __init__(
        self,
        source: SourceSnapshot,
        *,
        pipeline: Pipeline,
        store: SnapshotStore,
        privileged: bool = False,
    ) -> None:
        self.source = source
        self.pipeline = pipeline
        self.store = store
        self.privileged = privileged

    def __repr__(self) -> str:
        return f"Workspace(source={self.source.short_id})"

    # -- Files -----------------------------------------------------------------

    async def read_file(self, path: str) -> str:
        return await self.store.read_text(self.source, path)

    async def write_file(self, path: str, contents: str) -> None:
        self.source = await self.store.with_file(self.source, path, contents)
        logger.debug("workspace wrote %s -> %s", path, self.source.short_id)

    async def list_files(self, path: str = ".") -> list[str]:
        """List files under ``path``, skipping ``node_modules``."""
        files = await self.store.list_files(self.source, path)
        return [f for f in files if DEPENDENCY_DIR not in f.split("/")]

    # -- Commands --------------------------------------------------------------

    async def run_command(self, command: str) -> str:
        """Run ``sh -c command`` in the source directory.

        Never raises on a non-zero exit: the exit code and output are returned
        so the agent can react to them.
        """
        container = (
            self.pipeline.base_env(self.source)
            .with_privileged(self.privileged)
            .with_exec(("sh", "-c", command), expect_success=False)
        )
        evaluation = await container.engine.evaluate(container, export=SOURCE_PATH, exclude=[DEPENDENCY_DIR])
        if evaluation.directory is not None:
            self.source = evaluation.directory
        logger.info("workspace command %r exited %d", command, evaluation.exit_code)
        return _format_result(evaluation.exit_code, evaluation.stdout, evaluation.stderr)

    async def run_tests(self) -> str:
        """Run the unit tests on the current source and report the outcome."""
        try:
            output = await self.pipeline.test(self.source)
        except CommandError as exc:
            return _format_result(exc.exit_code, exc.stdout, exc.stderr)
        return _format_result(0, output, "")


def _format_result(exit_code: int, stdout: str, stderr: str) -> str:
    parts = [f"exit code: {exit_code}"]
    if stdout.strip():
        parts.append(f"stdout:\n{_truncate(stdout)}")
    if stderr.strip():
        parts.append(f"stderr:\n{_truncate(stderr)}")
    return "\n".join(parts)


def _truncate(text: str) -> str:
    if len(text) <= _MAX_OUTPUT_CHARS:
        return text.rstrip()
    return "[...truncated...]\n" + text[-_MAX_OUTPUT_CHARS:].rstrip()
