"""Docker adapter for the execution engine.

Each exec step runs in a fresh ``docker run --rm`` container:

- mounted snapshots are bind-mounted from the scratch directory,
- cache volumes become named docker volumes ``{volume_prefix}-{key}``,
  shared by every run on the same daemon until explicitly removed,
- the working directory and privileged flag come from the description.

Docker exits with 125 both when it cannot start the container at all
(unknown image, failed pull, daemon errors) and when the command itself
exits 125.  Only the former, recognised by the CLI's ``docker: `` error
prefix on stderr, is reported as an environment failure.

Each step runs under a unique container name so a cancelled step can be
removed with ``docker rm --force``.  Files the container's root user leaves
in the scratch directory are deleted from inside a throwaway container.

Publishing renders a Dockerfile (``FROM`` the base image, ``COPY`` each
mounted snapshot, ``RUN`` each step, ``EXPOSE`` each port), builds it and
pushes it.  An address that already resolves in the registry is refused so a
tag collision never overwrites another image.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
import uuid
from collections.abc import Sequence
from pathlib import Path

import anyio
from anyio import to_thread

from hellodagger.engine.base import (
    EngineError,
    EnvironmentSetupError,
    ExecResult,
    Mounts,
    PublishConflictError,
    ScratchEngine,
)
from hellodagger.engine.container import Container, Exec
from hellodagger.store.local import SnapshotStore

logger = logging.getLogger(__name__)

DOCKER_RUN_FAILURE = 125


class DockerEngine(ScratchEngine):
    """Runs container steps through the docker CLI."""

    def __init__(
        self,
        store: SnapshotStore,
        *,
        docker_bin: str = "docker",
        volume_prefix: str = "hellodagger-cache",
        scratch_root: str | Path | None = None,
        command_timeout: float | None = None,
    ) -> None:
        super().__init__(store, scratch_root=scratch_root, command_timeout=command_timeout)
        self.docker_bin = docker_bin
        self.volume_prefix = volume_prefix

    def volume_name(self, key: str) -> str:
        return f"{self.volume_prefix}-{key}"

    # -- Exec ------------------------------------------------------------------

    def run_command(self, container: Container, step: Exec, mounts: Mounts, *, name: str | None = None) -> list[str]:
        """Build the ``docker run`` argument list for one step."""
        if container.image is None:
            msg = "container has no base image"
            raise EngineError(msg)
        cmd = [self.docker_bin, "run", "--rm"]
        if name is not None:
            cmd += ["--name", name]
        if container.privileged:
            cmd.append("--privileged")
        for path, host in mounts.items():
            cmd += ["--mount", f"type=bind,source={host},target={path}"]
        for path, cache in container.caches:
            cmd += ["--mount", f"type=volume,source={self.volume_name(cache.key)},target={path}"]
        cmd += ["--workdir", container.workdir, container.image, *step.args]
        return cmd

    async def _run_exec(self, container: Container, step: Exec, mounts: Mounts) -> ExecResult:
        name = f"hellodagger-{uuid.uuid4().hex[:12]}"
        try:
            result = await self._docker(self.run_command(container, step, mounts, name=name))
        except anyio.get_cancelled_exc_class():
            # Killing the docker client leaves the container running.
            with anyio.CancelScope(shield=True):
                logger.warning("step %s cancelled, removing container %s", " ".join(step.args), name)
                await self._docker([self.docker_bin, "rm", "--force", name])
            raise
        if is_start_failure(result):
            raise EnvironmentSetupError(step.args, result.exit_code, result.stdout, result.stderr)
        return result

    async def _release_scratch(self, container: Container, scratch: Path) -> None:
        """Delete files left in ``scratch`` by the container's root user."""
        if container.image is None:
            return
        await self._docker([
            self.docker_bin,
            "run",
            "--rm",
            "--mount",
            f"type=bind,source={scratch.resolve()},target=/scratch",
            "--entrypoint",
            "find",
            container.image,
            "/scratch",
            "-mindepth",
            "1",
            "-delete",
        ])

    # -- Publish ---------------------------------------------------------------

    async def publish(self, container: Container, address: str) -> str:
        if container.image is None:
            msg = "container has no base image"
            raise EngineError(msg)
        if container.caches:
            logger.warning("cache mounts are not part of published images, ignoring %d", len(container.caches))

        existing = await self._docker([self.docker_bin, "manifest", "inspect", address])
        if existing.exit_code == 0:
            msg = f"refusing to overwrite existing image at {address}"
            raise PublishConflictError(msg)

        context = Path(await to_thread.run_sync(lambda: tempfile.mkdtemp(prefix="hellodagger-build-")))
        try:
            names: list[str] = []
            for index, (_path, snapshot) in enumerate(container.directories):
                name = f"dir-{index}"
                await self.store.materialize(snapshot, context / name)
                names.append(name)
            dockerfile = render_dockerfile(container, names)
            await to_thread.run_sync(lambda: (context / "Dockerfile").write_text(dockerfile, encoding="utf-8"))

            logger.info("building image %s", address)
            await self._docker_checked([self.docker_bin, "build", "--tag", address, str(context)])
        finally:
            await to_thread.run_sync(lambda: _rmtree_quiet(context))

        logger.info("pushing image %s", address)
        await self._docker_checked([self.docker_bin, "push", address])

        inspect = await self._docker_checked(
            [self.docker_bin, "image", "inspect", "--format", "{{json .RepoDigests}}", address]
        )
        return _pick_repo_digest(inspect.stdout, address)

    # -- Process helpers -------------------------------------------------------

    async def _docker(self, cmd: Sequence[str]) -> ExecResult:
        logger.debug("running %s", " ".join(cmd))
        proc = await anyio.run_process(list(cmd), check=False)
        return ExecResult(
            exit_code=proc.returncode,
            stdout=proc.stdout.decode("utf-8", errors="replace"),
            stderr=proc.stderr.decode("utf-8", errors="replace"),
        )

    async def _docker_checked(self, cmd: Sequence[str]) -> ExecResult:
        result = await self._docker(cmd)
        if result.exit_code != 0:
            msg = f"{' '.join(cmd)} failed ({result.exit_code}): {result.stderr.strip()}"
            raise EngineError(msg)
        return result


def render_dockerfile(container: Container, context_names: Sequence[str]) -> str:
    """Render the Dockerfile equivalent of ``container``.

    ``context_names[i]`` is the build-context directory holding the i-th
    mounted snapshot.
    """
    lines = [f"FROM {container.image}"]
    for name, (path, _snapshot) in zip(context_names, container.directories, strict=True):
        lines.append(f"COPY {name}/ {path}")
    if container.workdir != "/":
        lines.append(f"WORKDIR {container.workdir}")
    lines.extend(f"RUN {json.dumps(list(step.args))}" for step in container.execs)
    lines.extend(f"EXPOSE {port}" for port in container.exposed_ports)
    return "\n".join(lines) + "\n"


def _pick_repo_digest(raw: str, address: str) -> str:
    """Return ``repo@sha256:...`` for the pushed address, or the address itself."""
    try:
        digests = json.loads(raw.strip() or "[]")
    except json.JSONDecodeError:
        return address
    repo = address.rsplit(":", 1)[0] if ":" in address.rsplit("/", 1)[-1] else address
    for digest in digests or []:
        if digest.startswith(f"{repo}@"):
            return f"{address}@{digest.split('@', 1)[1]}"
    return address


def _rmtree_quiet(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)


def is_start_failure(result: ExecResult) -> bool:
    """Whether a ``docker run`` result means the container never started."""
    if result.exit_code != DOCKER_RUN_FAILURE:
        return False
    return any(line.startswith("docker: ") for line in result.stderr.splitlines())
