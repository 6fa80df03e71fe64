"""Top-level operations.

``HelloDagger`` is the surface a build/CI driver calls: ``test``, ``build``,
``publish``, ``build_env``, ``develop`` and ``develop_issue``.  It owns no
logic of its own; ``create_hellodagger`` wires the engine, snapshot store,
agent and tracker chosen by the settings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from pydantic import SecretStr

from hellodagger.agent.base import Agent
from hellodagger.agent.session import AgentSession
from hellodagger.engine.base import ExecutionEngine
from hellodagger.engine.container import Container
from hellodagger.models.enums import EngineMode
from hellodagger.models.snapshot import SourceSnapshot
from hellodagger.pipeline import Pipeline
from hellodagger.settings import HelloDaggerSettings, get_settings
from hellodagger.store.local import SnapshotStore
from hellodagger.tracker.base import IssueTracker
from hellodagger.workflow import IssueWorkflow

logger = logging.getLogger(__name__)

TrackerFactory = Callable[[SecretStr], IssueTracker]


class HelloDagger:
    """Build, test, publish and develop the application."""

    def __init__(
        self,
        *,
        engine: ExecutionEngine,
        store: SnapshotStore,
        agent: Agent,
        settings: HelloDaggerSettings,
        tracker_factory: TrackerFactory | None = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.agent = agent
        self.settings = settings
        self.pipeline = Pipeline(engine, settings)
        self.session = AgentSession(agent, pipeline=self.pipeline, store=store, settings=settings)
        self._tracker_factory = tracker_factory or self._github_tracker

    async def load_source(self, path: str | Path) -> SourceSnapshot:
        """Import a host directory, leaving out ``settings.source_exclude``."""
        snapshot = await self.store.import_directory(path, exclude=self.settings.source_exclude)
        logger.info("Imported %s as snapshot %s", path, snapshot.short_id)
        return snapshot

    # -- Pipeline --------------------------------------------------------------

    def build_env(self, source: SourceSnapshot) -> Container:
        """Build a ready-to-use development environment."""
        return self.pipeline.build_env(source)

    async def test(self, source: SourceSnapshot) -> str:
        """Return the result of running unit tests."""
        return await self.pipeline.test(source)

    async def build(self, source: SourceSnapshot) -> Container:
        """Build the application container."""
        return await self.pipeline.build(source)

    async def publish(self, source: SourceSnapshot) -> str:
        """Publish the application container after building and testing it."""
        return await self.pipeline.publish(source)

    # -- Agent -----------------------------------------------------------------

    async def develop(self, assignment: str, source: SourceSnapshot) -> SourceSnapshot:
        """A coding agent for developing new features."""
        return await self.session.develop(assignment, source)

    async def develop_issue(
        self,
        github_token: SecretStr,
        issue_id: int,
        repository: str,
        source: SourceSnapshot,
    ) -> str:
        """Develop with a GitHub issue as the assignment and open a pull request."""
        workflow = IssueWorkflow(
            self.session,
            self._tracker_factory(github_token),
            default_branch=self.settings.default_branch,
        )
        return await workflow.develop_issue(issue_id, repository, source)

    def _github_tracker(self, token: SecretStr) -> IssueTracker:
        from hellodagger.tracker.github import GitHubTracker

        return GitHubTracker(
            token,
            store=self.store,
            base_url=self.settings.github_api_base_url,
            timeout=self.settings.github_timeout,
            branch_prefix=self.settings.change_branch_prefix,
        )


def create_hellodagger(settings: HelloDaggerSettings | None = None, *, agent: Agent | None = None) -> HelloDagger:
    """Wire a ``HelloDagger`` from settings (engine mode, storage, agent model)."""
    settings = settings or get_settings()
    store = SnapshotStore(settings.data_root, prefix=settings.data_prefix)

    engine: ExecutionEngine
    if settings.engine_mode == EngineMode.DOCKER:
        from hellodagger.engine.docker import DockerEngine

        engine = DockerEngine(
            store,
            docker_bin=settings.docker_bin,
            volume_prefix=settings.cache_volume_prefix,
            command_timeout=settings.command_timeout,
        )
    else:
        from hellodagger.engine.local import LocalEngine

        engine = LocalEngine(store, command_timeout=settings.command_timeout)

    if agent is None:
        from hellodagger.agent.llm import PydanticAIAgent

        agent = PydanticAIAgent.from_settings(settings)

    logger.debug("Created HelloDagger: engine=%s, data_root=%s", settings.engine_mode, settings.data_root)
    return HelloDagger(engine=engine, store=store, agent=agent, settings=settings)
