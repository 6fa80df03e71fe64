"""Unit tests for the immutable Container builder."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from hellodagger.engine.container import CacheVolume, Container, Exec
from hellodagger.models.snapshot import SourceSnapshot

if TYPE_CHECKING:
    from tests.conftest import FakeEngine


def _container(engine: FakeEngine) -> Container:
    return engine.container()


def test_builders_return_new_containers(engine: FakeEngine, source: SourceSnapshot) -> None:
    empty = _container(engine)
    built = empty.from_("node:21-slim").with_directory("/src", source).with_workdir("/src").with_exec(["ls"])

    assert empty.image is None
    assert empty.directories == ()
    assert empty.execs == ()
    assert built.image == "node:21-slim"
    assert built.directories == (("/src", source),)
    assert built.workdir == "/src"
    assert built.execs == (Exec(args=("ls",)),)


def test_equal_descriptions_are_equal(engine: FakeEngine, source: SourceSnapshot) -> None:
    a = _container(engine).from_("alpine").with_directory("/src", source).with_exec(["ls"])
    b = _container(engine).from_("alpine").with_directory("/src", source).with_exec(["ls"])
    assert a == b


def test_relative_paths_resolve_against_workdir(engine: FakeEngine, source: SourceSnapshot) -> None:
    container = _container(engine).with_workdir("/src").with_directory("./dist", source)
    assert container.directories == (("/src/dist", source),)
    assert container.resolve_path("../usr/./share/") == "/usr/share"
    assert container.resolve_path("/a/b/..") == "/a"


def test_with_directory_replaces_same_path(engine: FakeEngine, source: SourceSnapshot) -> None:
    other = SourceSnapshot(digest="f" * 64, root=source.root)
    container = _container(engine).with_directory("/src", source).with_directory("/src/", other)

    assert container.directories == (("/src", other),)
    assert container.directory_at("/src") == other
    assert container.directory_at("/elsewhere") is None


def test_with_mounted_cache(engine: FakeEngine) -> None:
    container = _container(engine).with_mounted_cache("/root/.npm", CacheVolume("node"))
    assert container.caches == (("/root/.npm", CacheVolume("node")),)


def test_with_exec_requires_args(engine: FakeEngine) -> None:
    with pytest.raises(ValueError):
        _container(engine).with_exec([])


def test_with_exec_flags(engine: FakeEngine) -> None:
    container = _container(engine).with_exec(["npm", "install"], setup=True).with_exec(["sh"], expect_success=False)
    assert container.execs == (
        Exec(args=("npm", "install"), setup=True),
        Exec(args=("sh",), expect_success=False),
    )


def test_exposed_ports_are_unique(engine: FakeEngine) -> None:
    container = _container(engine).with_exposed_port(80).with_exposed_port(80).with_exposed_port(443)
    assert container.exposed_ports == (80, 443)


def test_with_privileged(engine: FakeEngine) -> None:
    container = _container(engine)
    assert container.privileged is False
    assert container.with_privileged().privileged is True
    assert container.with_privileged().with_privileged(False).privileged is False
