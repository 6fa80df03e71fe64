"""Agent session -- assignment in, validated snapshot out.

The session manages one ``develop`` call:

1. **Setup**: wrap the source in a privileged ``Workspace`` and declare the
   bindings (``assignment`` and ``workspace`` inputs, ``completed`` output).
2. **Execute**: hand the environment and the develop prompt to the agent.
3. **Finalize**: take the ``completed`` workspace, strip ``node_modules``
   and run the unit tests on the result.

The test run is a gate: a snapshot that fails it is never returned.  With
``develop_max_attempts > 1`` the agent gets the failing output and another
try on its own result; otherwise the gate failure is final.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hellodagger.agent.env import AgentEnv
from hellodagger.agent.prompt import load_prompt
from hellodagger.agent.workspace import Workspace
from hellodagger.engine.base import CommandError
from hellodagger.pipeline import DEPENDENCY_DIR

if TYPE_CHECKING:
    from hellodagger.agent.base import Agent
    from hellodagger.models.snapshot import SourceSnapshot
    from hellodagger.pipeline import Pipeline
    from hellodagger.settings import HelloDaggerSettings
    from hellodagger.store.local import SnapshotStore

logger = logging.getLogger(__name__)


_GATE_FEEDBACK = """

## Previous attempt rejected

Your previous result failed the unit tests. The workspace contains that
result. Fix it so the tests pass. Test output:

{{% raw %}}```
{output}
```{{% endraw %}}
"""


class ValidationGateError(RuntimeError):
    """Raised when the agent's result fails the unit tests."""

    def __init__(self, snapshot: SourceSnapshot, cause: CommandError) -> None:
        self.snapshot = snapshot
        self.output = cause.output
        super().__init__(f"snapshot {snapshot.short_id} produced by the agent failed validation:\n{cause}")


class AgentSession:
    """Runs the develop agent and enforces the validation gate."""

    def __init__(
        self,
        agent: Agent,
        *,
        pipeline: Pipeline,
        store: SnapshotStore,
        settings: HelloDaggerSettings,
    ) -> None:
        self.agent = agent
        self.pipeline = pipeline
        self.store = store
        self.settings = settings

    def build_env(self, assignment: str, source: SourceSnapshot) -> AgentEnv:
        workspace = Workspace(source, pipeline=self.pipeline, store=self.store, privileged=True)
        return (
            AgentEnv(privileged=True)
            .with_string_input("assignment", assignment, "the assignment to complete")
            .with_workspace_input("workspace", workspace, "the workspace with tools to edit code")
            .with_workspace_output("completed", "the workspace with the completed assignment")
        )

    async def develop(self, assignment: str, source: SourceSnapshot) -> SourceSnapshot:
        """Complete ``assignment`` on ``source`` and return the validated result."""
        if not assignment.strip():
            msg = "assignment must not be empty"
            raise ValueError(msg)

        prompt = load_prompt(override=self.settings.develop_prompt_path)
        attempts = max(1, self.settings.develop_max_attempts)
        current = source

        for attempt in range(1, attempts + 1):
            logger.info("develop attempt %d/%d on snapshot %s", attempt, attempts, current.short_id)
            env = self.build_env(assignment, current)
            completed_env = await self.agent.run(env, prompt)

            completed = completed_env.output("completed").as_workspace()
            candidate = await self.strip_dependencies(completed.source)

            try:
                await self.pipeline.test(candidate)
            except CommandError as exc:
                if attempt == attempts:
                    raise ValidationGateError(candidate, exc) from exc
                logger.warning("develop attempt %d failed validation, retrying with feedback", attempt)
                prompt = prompt + _GATE_FEEDBACK.format(output=exc.output)
                current = candidate
                continue

            logger.info("develop produced validated snapshot %s", candidate.short_id)
            return candidate

        # Unreachable: the last attempt either returns or raises.
        msg = "develop finished without a result"
        raise RuntimeError(msg)

    async def strip_dependencies(self, snapshot: SourceSnapshot) -> SourceSnapshot:
        """Remove the installed dependency tree.  Stripping twice equals stripping once."""
        return await self.store.without_directory(snapshot, DEPENDENCY_DIR)
