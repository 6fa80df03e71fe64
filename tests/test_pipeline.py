"""Tests for the build/test/publish pipeline (via FakeEngine)."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import pytest

from hellodagger.engine.base import CommandError, EnvironmentSetupError, ExecResult
from hellodagger.engine.container import CacheVolume, Exec
from hellodagger.models.snapshot import SourceSnapshot
from hellodagger.pipeline import (
    BUILD_COMMAND,
    INSTALL_COMMAND,
    NPM_CACHE_PATH,
    SERVE_PATH,
    SOURCE_PATH,
    TEST_COMMAND,
    Pipeline,
)
from hellodagger.settings import HelloDaggerSettings
from hellodagger.store.local import SnapshotStore

if TYPE_CHECKING:
    from tests.conftest import FakeEngine


async def _failing_source(store: SnapshotStore, source: SourceSnapshot) -> SourceSnapshot:
    return await store.with_file(source, "FAIL_TESTS", "")


# ---------------------------------------------------------------------------
# build_env
# ---------------------------------------------------------------------------


def test_build_env(pipeline: Pipeline, source: SourceSnapshot) -> None:
    env = pipeline.build_env(source)

    assert env.image == "node:21-slim"
    assert env.directories == ((SOURCE_PATH, source),)
    assert env.caches == ((NPM_CACHE_PATH, CacheVolume("node")),)
    assert env.workdir == SOURCE_PATH
    assert env.execs == (Exec(args=INSTALL_COMMAND, setup=True),)
    assert env.privileged is False


def test_build_env_is_deterministic(pipeline: Pipeline, source: SourceSnapshot) -> None:
    assert pipeline.build_env(source) == pipeline.build_env(source)


# ---------------------------------------------------------------------------
# test
# ---------------------------------------------------------------------------


async def test_unit_tests_return_output(pipeline: Pipeline, engine: FakeEngine, source: SourceSnapshot) -> None:
    assert await pipeline.test(source) == "Tests  1 passed (1)\n"
    assert engine.commands == [INSTALL_COMMAND, TEST_COMMAND]


async def test_unit_test_failure_carries_output(
    pipeline: Pipeline, store: SnapshotStore, source: SourceSnapshot
) -> None:
    with pytest.raises(CommandError) as exc_info:
        await pipeline.test(await _failing_source(store, source))
    assert "1 failed" in exc_info.value.stdout
    assert "AssertionError" in exc_info.value.stderr


async def test_install_failure_stops_everything(pipeline: Pipeline, engine: FakeEngine, source: SourceSnapshot) -> None:
    engine.handlers[INSTALL_COMMAND] = lambda cwd: ExecResult(1, "", "npm ERR! 404 Not Found\n")

    with pytest.raises(EnvironmentSetupError, match="404"):
        await pipeline.test(source)
    assert engine.commands == [INSTALL_COMMAND]


# ---------------------------------------------------------------------------
# build
# ---------------------------------------------------------------------------


async def test_build_serves_exactly_the_bundle(
    pipeline: Pipeline, store: SnapshotStore, source: SourceSnapshot
) -> None:
    image = await pipeline.build(source)

    assert image.image == "nginx:1.25-alpine"
    assert image.exposed_ports == (80,)
    assert image.caches == ()
    assert [path for path, _ in image.directories] == [SERVE_PATH]

    bundle = image.directory_at(SERVE_PATH)
    assert bundle is not None
    assert await store.list_files(bundle) == ["index.html"]


async def test_build_runs_install_then_build(pipeline: Pipeline, engine: FakeEngine, source: SourceSnapshot) -> None:
    await pipeline.build(source)
    assert engine.commands == [INSTALL_COMMAND, BUILD_COMMAND]


# ---------------------------------------------------------------------------
# publish
# ---------------------------------------------------------------------------


async def test_publish(pipeline: Pipeline, engine: FakeEngine, source: SourceSnapshot) -> None:
    ref = await pipeline.publish(source)

    assert len(engine.publishes) == 1
    image, address = engine.publishes[0]
    assert ref.startswith(address + "@sha256:")
    assert image.exposed_ports == (80,)
    assert engine.commands.index(TEST_COMMAND) < engine.commands.index(BUILD_COMMAND)


async def test_publish_never_pushes_untested_code(
    pipeline: Pipeline, engine: FakeEngine, store: SnapshotStore, source: SourceSnapshot
) -> None:
    with pytest.raises(CommandError):
        await pipeline.publish(await _failing_source(store, source))

    assert engine.publishes == []
    assert BUILD_COMMAND not in engine.commands


def test_publish_address(pipeline: Pipeline) -> None:
    for _ in range(20):
        address = pipeline.publish_address()
        match = re.fullmatch(r"ttl\.sh/hello-dagger-(\d+)", address)
        assert match is not None
        assert 0 <= int(match.group(1)) < 10_000_000


def test_publish_address_from_settings(engine: FakeEngine, tmp_path) -> None:
    settings = HelloDaggerSettings(
        _env_file=None,  # type: ignore[call-arg]
        data_root=str(tmp_path),
        registry="registry.example.com/team",
        image_name="web",
        publish_tag_range=1,
    )
    assert Pipeline(engine, settings).publish_address() == "registry.example.com/team/web-0"
