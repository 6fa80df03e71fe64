"""Local filesystem snapshot store.

Stores snapshots as plain directory trees under a data root with optional
namespace prefix::

    {data_root}/{prefix}/snapshots/{digest}/

When prefix is None, the path collapses to::

    {data_root}/snapshots/{digest}/

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.

Writes are atomic: every new tree is staged in a temporary directory next to
the snapshots, hashed, then renamed to its digest.  A tree whose digest
already exists is discarded, so identical content is stored once and stored
trees are never modified in place.
"""

from __future__ import annotations

import contextlib
import hashlib
import os
import posixpath
import shutil
import stat
import tempfile
from collections.abc import Callable, Iterable
from functools import partial
from pathlib import Path, PurePosixPath

from anyio import to_thread

from hellodagger.models.snapshot import SnapshotEntry, SourceSnapshot

_CHUNK_SIZE = 1 << 16


class SnapshotNotFoundError(LookupError):
    """Raised when a digest is not present in the store."""


class SnapshotStore:
    """Content-addressed store of immutable directory trees.

    Layout::

        {base}/snapshots/{digest}/...

    Where ``base`` is ``data_root / prefix`` (or just ``data_root`` if no prefix).
    """

    def __init__(self, data_root: str | Path, prefix: str | None = None) -> None:
        base = Path(data_root).expanduser()
        if prefix:
            base = base / prefix
        self._base = (base / "snapshots").absolute()

    @property
    def base(self) -> Path:
        return self._base

    def get(self, digest: str) -> SourceSnapshot:
        """Look up a stored snapshot by digest.  Raises ``SnapshotNotFoundError``."""
        root = self._base / digest
        if not root.is_dir():
            raise SnapshotNotFoundError(digest)
        return SourceSnapshot(digest=digest, root=root)

    # -- Create ----------------------------------------------------------------

    async def import_directory(self, source: str | Path, *, exclude: Iterable[str] = ()) -> SourceSnapshot:
        """Copy a host directory into the store.

        ``exclude`` holds POSIX paths relative to ``source`` that are left out.
        """
        excluded = frozenset(_normalize(p) for p in exclude)
        return await to_thread.run_sync(partial(self._import, Path(source), excluded))

    async def without_directory(self, snapshot: SourceSnapshot, path: str) -> SourceSnapshot:
        """Return ``snapshot`` minus the tree at ``path``.

        Idempotent: if ``path`` does not exist the same snapshot is returned.
        """
        _resolve_inside(snapshot.root, path)
        rel = _normalize(path)
        if not os.path.lexists(snapshot.root / rel):
            return snapshot
        return await self.import_directory(snapshot.root, exclude=[rel])

    async def with_file(self, snapshot: SourceSnapshot, path: str, contents: str | bytes) -> SourceSnapshot:
        """Return a new snapshot with ``path`` created or replaced by ``contents``."""
        rel = _resolve_inside(snapshot.root, path).relative_to(snapshot.root.resolve())
        data = contents.encode("utf-8") if isinstance(contents, str) else contents
        return await to_thread.run_sync(partial(self._derive, snapshot, partial(_write_file, rel=rel, data=data)))

    async def subdirectory(self, snapshot: SourceSnapshot, path: str) -> SourceSnapshot:
        """Return the tree at ``path`` as a snapshot of its own."""
        target = _resolve_inside(snapshot.root, path)
        if not target.is_dir():
            msg = f"{path} is not a directory in snapshot {snapshot.short_id}"
            raise NotADirectoryError(msg)
        return await self.import_directory(target)

    # -- Read ------------------------------------------------------------------

    async def read_text(self, snapshot: SourceSnapshot, path: str) -> str:
        """Read a text file.  Raises ``FileNotFoundError`` if missing."""
        target = _resolve_inside(snapshot.root, path)
        return await to_thread.run_sync(partial(target.read_text, encoding="utf-8"))

    async def list_files(self, snapshot: SourceSnapshot, path: str = ".") -> list[str]:
        """List file paths under ``path``, relative to the snapshot root."""
        target = _resolve_inside(snapshot.root, path)
        if not target.is_dir():
            msg = f"{path} is not a directory in snapshot {snapshot.short_id}"
            raise NotADirectoryError(msg)
        entries = await to_thread.run_sync(partial(_walk_entries, target))
        prefix = PurePosixPath(target.relative_to(snapshot.root.resolve()).as_posix())
        return [(prefix / entry.path).as_posix() for entry in entries]

    async def list_entries(self, snapshot: SourceSnapshot) -> list[SnapshotEntry]:
        """List every file and symlink in the snapshot, sorted by path."""
        return await to_thread.run_sync(partial(_walk_entries, snapshot.root))

    async def materialize(self, snapshot: SourceSnapshot, dest: str | Path) -> Path:
        """Copy a snapshot to a writable host directory and return its path."""
        dest = Path(dest)
        await to_thread.run_sync(partial(shutil.copytree, snapshot.root, dest, symlinks=True, dirs_exist_ok=True))
        return dest

    # -- Sync internals (run in thread pool) -----------------------------------

    def _import(self, source: Path, exclude: frozenset[str]) -> SourceSnapshot:
        if not source.is_dir():
            raise NotADirectoryError(str(source))
        return self._stage(lambda staging: _copy_tree(source, staging, exclude))

    def _derive(self, snapshot: SourceSnapshot, mutate: Callable[[Path], None]) -> SourceSnapshot:
        def _build(staging: Path) -> None:
            _copy_tree(snapshot.root, staging, frozenset())
            mutate(staging)

        return self._stage(_build)

    def _stage(self, build: Callable[[Path], None]) -> SourceSnapshot:
        """Build a tree in a staging directory, then move it to its digest."""
        self._base.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(dir=self._base, prefix=".staging-"))
        try:
            build(staging)
            digest = compute_digest(staging)
            target = self._base / digest
            if target.exists():
                _rmtree(staging)
            else:
                try:
                    os.rename(staging, target)
                except OSError:
                    # Another writer stored the same content first.
                    if not target.is_dir():
                        raise
                    _rmtree(staging)
        except BaseException:
            with contextlib.suppress(OSError):
                _rmtree(staging)
            raise
        return SourceSnapshot(digest=digest, root=target)


# -- Digest --------------------------------------------------------------------


def compute_digest(root: Path) -> str:
    """Hash a directory tree by relative path, entry type, mode and content."""
    h = hashlib.sha256()
    for rel, path in _iter_tree(root):
        if path.is_symlink():
            h.update(f"l {rel} {os.readlink(path)}\n".encode())
        elif path.is_dir():
            h.update(f"d {rel}\n".encode())
        else:
            mode = "x" if _is_executable(path) else "-"
            h.update(f"f {rel} {mode} {_file_digest(path)}\n".encode())
    return h.hexdigest()


def _iter_tree(root: Path) -> Iterable[tuple[str, Path]]:
    """Yield ``(relative_posix_path, path)`` for every entry, sorted, without following links."""
    entries: list[tuple[str, Path]] = []
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        for name in [*dirnames, *filenames]:
            path = current / name
            entries.append((path.relative_to(root).as_posix(), path))
    return sorted(entries)


def _file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(partial(f.read, _CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def _is_executable(path: Path) -> bool:
    return bool(path.stat().st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


def _walk_entries(root: Path) -> list[SnapshotEntry]:
    result: list[SnapshotEntry] = []
    for rel, path in _iter_tree(root):
        if path.is_symlink():
            result.append(SnapshotEntry(path=rel, symlink_target=os.readlink(path)))
        elif path.is_file():
            result.append(SnapshotEntry(path=rel, executable=_is_executable(path)))
    return result


# -- Path helpers ----------------------------------------------------------------


def _normalize(path: str) -> str:
    """Normalize a relative POSIX path (``./a/b/`` -> ``a/b``)."""
    return posixpath.normpath(path)


def _resolve_inside(root: Path, path: str) -> Path:
    """Resolve ``path`` under ``root``.  Raises ``ValueError`` if it escapes."""
    if PurePosixPath(path).is_absolute():
        msg = f"path must be relative to the snapshot root: {path}"
        raise ValueError(msg)
    base = root.resolve()
    target = (base / _normalize(path)).resolve()
    if not target.is_relative_to(base):
        msg = f"path escapes the snapshot root: {path}"
        raise ValueError(msg)
    return target


# -- Sync helpers (run in thread pool) -----------------------------------------


def _copy_tree(source: Path, dest: Path, exclude: frozenset[str]) -> None:
    def _ignore(dirpath: str, names: list[str]) -> set[str]:
        if not exclude:
            return set()
        rel = Path(dirpath).relative_to(source)
        return {name for name in names if (rel / name).as_posix() in exclude}

    shutil.copytree(source, dest, symlinks=True, ignore=_ignore, dirs_exist_ok=True)


def _write_file(staging: Path, *, rel: Path, data: bytes) -> None:
    target = staging / rel
    if target.is_symlink() or target.is_dir():
        msg = f"cannot overwrite non-file path: {rel.as_posix()}"
        raise IsADirectoryError(msg)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)


def _rmtree(path: Path) -> None:
    """Remove directory tree.  No-op if path doesn't exist."""
    if path.exists():
        shutil.rmtree(path)
