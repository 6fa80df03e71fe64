"""Host-process adapter for the execution engine.

Runs each step as a plain subprocess with its working directory mapped onto
the scratch copy of the enclosing mount.  The base image, cache volumes and
privileged flag have no host equivalent and are ignored, so this mode is only
as reproducible as the host toolchain.  Publishing is not supported.
"""

from __future__ import annotations

import logging

import anyio

from hellodagger.engine.base import ExecResult, Mounts, ScratchEngine, resolve_host_path
from hellodagger.engine.container import Container, Exec

logger = logging.getLogger(__name__)


class LocalEngine(ScratchEngine):
    """Runs container steps on the host."""

    async def _run_exec(self, container: Container, step: Exec, mounts: Mounts) -> ExecResult:
        cwd = resolve_host_path(mounts, container.workdir)
        if container.caches:
            logger.debug("local mode ignores %d cache mount(s)", len(container.caches))
        try:
            proc = await anyio.run_process(list(step.args), cwd=cwd, check=False)
        except FileNotFoundError as exc:
            # Same contract as a shell: unknown executables exit with 127.
            return ExecResult(exit_code=127, stdout="", stderr=str(exc))
        return ExecResult(
            exit_code=proc.returncode,
            stdout=proc.stdout.decode("utf-8", errors="replace"),
            stderr=proc.stderr.decode("utf-8", errors="replace"),
        )
