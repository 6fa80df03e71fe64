"""Unit tests for SnapshotStore.

No Docker required -- uses a temporary directory.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from hellodagger.store.local import SnapshotNotFoundError, SnapshotStore, compute_digest


@pytest.fixture
def prefixed_store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path, prefix="alice")


def _make_tree(root: Path, files: dict[str, str]) -> Path:
    for rel, contents in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(contents)
    return root


# ---------------------------------------------------------------------------
# Content addressing
# ---------------------------------------------------------------------------


async def test_identical_trees_share_digest(store: SnapshotStore, tmp_path: Path) -> None:
    files = {"a.txt": "alpha", "sub/b.txt": "beta"}
    first = await store.import_directory(_make_tree(tmp_path / "one", files))
    second = await store.import_directory(_make_tree(tmp_path / "two", files))

    assert first == second
    assert first.root == second.root
    assert first.id == f"sha256:{first.digest}"
    assert str(first) == first.id
    assert len(first.short_id) == 12


async def test_different_content_different_digest(store: SnapshotStore, tmp_path: Path) -> None:
    first = await store.import_directory(_make_tree(tmp_path / "one", {"a.txt": "alpha"}))
    second = await store.import_directory(_make_tree(tmp_path / "two", {"a.txt": "ALPHA"}))
    renamed = await store.import_directory(_make_tree(tmp_path / "three", {"b.txt": "alpha"}))

    assert len({first.digest, second.digest, renamed.digest}) == 3


async def test_executable_bit_changes_digest(tmp_path: Path) -> None:
    root = _make_tree(tmp_path / "tree", {"run.sh": "echo hi\n"})
    before = compute_digest(root)
    os.chmod(root / "run.sh", 0o755)
    assert compute_digest(root) != before


async def test_empty_directories_are_part_of_digest(tmp_path: Path) -> None:
    root = _make_tree(tmp_path / "tree", {"a.txt": "alpha"})
    before = compute_digest(root)
    (root / "empty").mkdir()
    assert compute_digest(root) != before


async def test_get(store: SnapshotStore, app_dir: Path) -> None:
    snapshot = await store.import_directory(app_dir)
    assert store.get(snapshot.digest) == snapshot

    with pytest.raises(SnapshotNotFoundError):
        store.get("0" * 64)


async def test_no_staging_left_behind(store: SnapshotStore, app_dir: Path) -> None:
    await store.import_directory(app_dir)
    await store.import_directory(app_dir)
    assert not [p for p in store.base.iterdir() if p.name.startswith(".staging-")]


def test_prefixed_layout(prefixed_store: SnapshotStore, tmp_path: Path) -> None:
    assert prefixed_store.base == (tmp_path / "alice" / "snapshots").absolute()


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------


async def test_import_excludes(store: SnapshotStore, tmp_path: Path) -> None:
    root = _make_tree(tmp_path / "app", {"src/main.js": "x", ".git/HEAD": "ref", "node_modules/a/index.js": "y"})
    snapshot = await store.import_directory(root, exclude=[".git", "./node_modules/"])
    assert await store.list_files(snapshot) == ["src/main.js"]


async def test_without_directory(store: SnapshotStore, tmp_path: Path) -> None:
    root = _make_tree(tmp_path / "app", {"src/main.js": "x", "node_modules/a/index.js": "y"})
    snapshot = await store.import_directory(root)

    stripped = await store.without_directory(snapshot, "node_modules")
    assert await store.list_files(stripped) == ["src/main.js"]
    # The original is untouched.
    assert "node_modules/a/index.js" in await store.list_files(snapshot)


async def test_without_directory_is_idempotent(store: SnapshotStore, tmp_path: Path) -> None:
    root = _make_tree(tmp_path / "app", {"src/main.js": "x", "node_modules/a/index.js": "y"})
    snapshot = await store.import_directory(root)

    once = await store.without_directory(snapshot, "node_modules")
    twice = await store.without_directory(once, "node_modules")
    assert once == twice


async def test_with_file(store: SnapshotStore, app_dir: Path) -> None:
    snapshot = await store.import_directory(app_dir)

    updated = await store.with_file(snapshot, "src/header.js", "export const header = 1\n")
    assert updated != snapshot
    assert await store.read_text(updated, "src/header.js") == "export const header = 1\n"
    with pytest.raises(FileNotFoundError):
        await store.read_text(snapshot, "src/header.js")


async def test_with_file_same_content_same_snapshot(store: SnapshotStore, app_dir: Path) -> None:
    snapshot = await store.import_directory(app_dir)
    rewritten = await store.with_file(snapshot, "src/main.js", (app_dir / "src" / "main.js").read_text())
    assert rewritten == snapshot


async def test_subdirectory(store: SnapshotStore, app_dir: Path) -> None:
    snapshot = await store.import_directory(app_dir)
    sub = await store.subdirectory(snapshot, "src")
    assert await store.list_files(sub) == ["main.js"]

    with pytest.raises(NotADirectoryError):
        await store.subdirectory(snapshot, "package.json")


async def test_list_files_under_path(store: SnapshotStore, app_dir: Path) -> None:
    snapshot = await store.import_directory(app_dir)
    assert await store.list_files(snapshot) == ["package.json", "src/main.js"]
    assert await store.list_files(snapshot, "src") == ["src/main.js"]


async def test_list_entries_modes(store: SnapshotStore, tmp_path: Path) -> None:
    root = _make_tree(tmp_path / "app", {"run.sh": "echo hi\n", "a.txt": "a"})
    os.chmod(root / "run.sh", 0o755)
    os.symlink("a.txt", root / "link")
    snapshot = await store.import_directory(root)

    entries = {e.path: e for e in await store.list_entries(snapshot)}
    assert entries["run.sh"].executable is True
    assert entries["a.txt"].executable is False
    assert entries["link"].symlink_target == "a.txt"


async def test_materialize(store: SnapshotStore, app_dir: Path, tmp_path: Path) -> None:
    snapshot = await store.import_directory(app_dir)
    dest = await store.materialize(snapshot, tmp_path / "out")
    (dest / "src" / "main.js").write_text("changed")

    assert await store.read_text(snapshot, "src/main.js") == "console.log('hello')\n"


@pytest.mark.parametrize("path", ["../outside.txt", "/etc/passwd", "src/../../x"])
async def test_paths_cannot_escape(store: SnapshotStore, app_dir: Path, path: str) -> None:
    snapshot = await store.import_directory(app_dir)
    with pytest.raises(ValueError):
        await store.with_file(snapshot, path, "x")
    with pytest.raises(ValueError):
        await store.read_text(snapshot, path)
