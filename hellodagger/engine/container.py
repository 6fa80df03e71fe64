"""Immutable container descriptions.

A ``Container`` describes an execution environment: a base image, snapshots
mounted at container paths, keyed cache volumes, a working directory, an
ordered list of commands and the ports the resulting image exposes.  Builder
methods return new containers; nothing runs until one of the awaitable
terminal methods (``stdout``, ``directory``, ``publish``) hands the
description to the engine.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from hellodagger.models.snapshot import SourceSnapshot

if TYPE_CHECKING:
    from hellodagger.engine.base import ExecutionEngine


@dataclass(frozen=True)
class CacheVolume:
    """A persistent cache shared by every container that mounts the same key."""

    key: str


@dataclass(frozen=True)
class Exec:
    """One command step.

    ``setup`` marks environment preparation (dependency installation); a
    failing setup step is reported as an environment failure.  Steps with
    ``expect_success=False`` never raise on a non-zero exit code.
    """

    args: tuple[str, ...]
    expect_success: bool = True
    setup: bool = False


@dataclass(frozen=True)
class Container:
    engine: ExecutionEngine = field(compare=False, repr=False)
    image: str | None = None
    directories: tuple[tuple[str, SourceSnapshot], ...] = ()
    caches: tuple[tuple[str, CacheVolume], ...] = ()
    workdir: str = "/"
    execs: tuple[Exec, ...] = ()
    exposed_ports: tuple[int, ...] = ()
    privileged: bool = False

    # -- Builders --------------------------------------------------------------

    def from_(self, image: str) -> Container:
        return replace(self, image=image)

    def with_directory(self, path: str, snapshot: SourceSnapshot) -> Container:
        """Mount ``snapshot`` at ``path``, replacing any snapshot already mounted there."""
        path = self.resolve_path(path)
        kept = tuple((p, s) for p, s in self.directories if p != path)
        return replace(self, directories=(*kept, (path, snapshot)))

    def with_mounted_cache(self, path: str, cache: CacheVolume) -> Container:
        path = self.resolve_path(path)
        kept = tuple((p, c) for p, c in self.caches if p != path)
        return replace(self, caches=(*kept, (path, cache)))

    def with_workdir(self, path: str) -> Container:
        return replace(self, workdir=self.resolve_path(path))

    def with_exec(self, args: Sequence[str], *, expect_success: bool = True, setup: bool = False) -> Container:
        if not args:
            msg = "with_exec requires at least one argument"
            raise ValueError(msg)
        step = Exec(args=tuple(args), expect_success=expect_success, setup=setup)
        return replace(self, execs=(*self.execs, step))

    def with_exposed_port(self, port: int) -> Container:
        if port in self.exposed_ports:
            return self
        return replace(self, exposed_ports=(*self.exposed_ports, port))

    def with_privileged(self, privileged: bool = True) -> Container:
        return replace(self, privileged=privileged)

    # -- Queries ---------------------------------------------------------------

    def resolve_path(self, path: str) -> str:
        """Resolve ``path`` against the working directory into a normalized absolute path."""
        pure = PurePosixPath(path)
        if not pure.is_absolute():
            pure = PurePosixPath(self.workdir) / pure
        parts: list[str] = []
        for part in pure.parts[1:]:
            if part == "..":
                if parts:
                    parts.pop()
            elif part != ".":
                parts.append(part)
        return str(PurePosixPath("/", *parts))

    def directory_at(self, path: str) -> SourceSnapshot | None:
        path = self.resolve_path(path)
        for mount_path, snapshot in self.directories:
            if mount_path == path:
                return snapshot
        return None

    # -- Terminal operations ---------------------------------------------------

    async def stdout(self) -> str:
        """Run every step and return the standard output of the last one."""
        evaluation = await self.engine.evaluate(self)
        return evaluation.stdout

    async def directory(self, path: str) -> SourceSnapshot:
        """Run every step and return the directory at ``path`` as a new snapshot."""
        evaluation = await self.engine.evaluate(self, export=path)
        if evaluation.directory is None:
            msg = f"engine returned no directory for {path}"
            raise RuntimeError(msg)
        return evaluation.directory

    async def publish(self, address: str) -> str:
        """Build this container as an image, push it to ``address`` and return the pushed reference."""
        return await self.engine.publish(self, address)
