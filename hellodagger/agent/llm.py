"""LLM agent backed by pydantic-ai.

Maps an ``AgentEnv`` onto a pydantic-ai run:

- the binding summary becomes the system prompt,
- the rendered prompt document becomes the user prompt,
- workspace inputs are reachable through tools that take the workspace
  binding name (``read_file``, ``write_file``, ``list_files``,
  ``run_command``, ``run_tests``),
- ``bind_output`` fills an output slot with an input binding or a string.

Tool failures caused by the model's arguments (bad paths, unknown bindings)
are returned to the model as retry prompts; everything else propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic_ai import Agent as PydanticAgent
from pydantic_ai import ModelRetry, ModelSettings, RunContext, Tool
from pydantic_ai.models import Model
from pydantic_ai.usage import UsageLimits

from hellodagger.agent.env import AgentEnv, BindingError
from hellodagger.agent.prompt import describe_environment, render_prompt
from hellodagger.agent.workspace import Workspace
from hellodagger.models.enums import BindingKind
from hellodagger.settings import HelloDaggerSettings

logger = logging.getLogger(__name__)

_ARGUMENT_ERRORS = (BindingError, ValueError, FileNotFoundError, NotADirectoryError, IsADirectoryError)


@dataclass
class AgentDeps:
    """Per-run state shared by the tools.  ``env`` is replaced as outputs are bound."""

    env: AgentEnv


def _workspace(ctx: RunContext[AgentDeps], name: str) -> Workspace:
    try:
        return ctx.deps.env.input(name).as_workspace()
    except BindingError as exc:
        raise ModelRetry(str(exc)) from exc


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


async def read_file(ctx: RunContext[AgentDeps], workspace: str, path: str) -> str:
    """Read a text file from a workspace.

    Args:
        workspace: Name of the workspace binding.
        path: File path relative to the project root.
    """
    try:
        return await _workspace(ctx, workspace).read_file(path)
    except _ARGUMENT_ERRORS as exc:
        raise ModelRetry(str(exc)) from exc


async def write_file(ctx: RunContext[AgentDeps], workspace: str, path: str, contents: str) -> str:
    """Create or overwrite a file in a workspace with the complete new contents.

    Args:
        workspace: Name of the workspace binding.
        path: File path relative to the project root.
        contents: Full file contents.
    """
    try:
        await _workspace(ctx, workspace).write_file(path, contents)
    except _ARGUMENT_ERRORS as exc:
        raise ModelRetry(str(exc)) from exc
    return f"wrote {path}"


async def list_files(ctx: RunContext[AgentDeps], workspace: str, path: str = ".") -> str:
    """List files under a directory of a workspace (node_modules is skipped).

    Args:
        workspace: Name of the workspace binding.
        path: Directory relative to the project root.
    """
    try:
        files = await _workspace(ctx, workspace).list_files(path)
    except _ARGUMENT_ERRORS as exc:
        raise ModelRetry(str(exc)) from exc
    return "\n".join(files) if files else "(empty)"


async def run_command(ctx: RunContext[AgentDeps], workspace: str, command: str) -> str:
    """Run a shell command in the project directory of a workspace and return its exit code and output.

    Args:
        workspace: Name of the workspace binding.
        command: Shell command line, run with `sh -c`.
    """
    return await _workspace(ctx, workspace).run_command(command)


async def run_tests(ctx: RunContext[AgentDeps], workspace: str) -> str:
    """Install dependencies and run the unit tests of a workspace.

    Args:
        workspace: Name of the workspace binding.
    """
    return await _workspace(ctx, workspace).run_tests()


async def bind_output(
    ctx: RunContext[AgentDeps],
    output: str,
    workspace: str | None = None,
    value: str | None = None,
) -> str:
    """Fill an output binding. Pass `workspace` for workspace outputs or `value` for string outputs.

    Args:
        output: Name of the output binding.
        workspace: Name of the workspace input whose current state is the result.
        value: Text result for string outputs.
    """
    env = ctx.deps.env
    try:
        slot = env.output(output)
        if slot.kind == BindingKind.WORKSPACE:
            if workspace is None:
                msg = f"output {output!r} needs a workspace"
                raise BindingError(msg)
            ctx.deps.env = env.bind_output(output, env.input(workspace).as_workspace())
        else:
            if value is None:
                msg = f"output {output!r} needs a value"
                raise BindingError(msg)
            ctx.deps.env = env.bind_output(output, value)
    except BindingError as exc:
        raise ModelRetry(str(exc)) from exc
    logger.info("agent bound output %r", output)
    return f"bound {output}"


TOOLS = [
    Tool(read_file, takes_ctx=True),
    Tool(write_file, takes_ctx=True),
    Tool(list_files, takes_ctx=True),
    Tool(run_command, takes_ctx=True),
    Tool(run_tests, takes_ctx=True),
    Tool(bind_output, takes_ctx=True),
]


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


def resolve_model_settings(settings: HelloDaggerSettings) -> ModelSettings:
    """Only explicitly set fields are included so the provider defaults apply otherwise."""
    values: dict[str, Any] = {}
    if settings.agent_temperature is not None:
        values["temperature"] = settings.agent_temperature
    if settings.agent_max_tokens is not None:
        values["max_tokens"] = settings.agent_max_tokens
    return ModelSettings(**values) if values else ModelSettings()


def request_count(result: Any) -> int:
    """Model requests made by a finished run.

    ``usage`` is a method on 1.x run results and a property on later releases.
    """
    usage = result.usage
    return (usage() if callable(usage) else usage).requests


class PydanticAIAgent:
    """``Agent`` implementation running a tool-calling LLM through pydantic-ai."""

    def __init__(
        self,
        model: Model | str,
        *,
        model_settings: ModelSettings | None = None,
        request_limit: int | None = None,
        tool_retries: int = 1,
    ) -> None:
        self.model = model
        self.model_settings = model_settings
        self.request_limit = request_limit
        self.tool_retries = tool_retries

    @classmethod
    def from_settings(cls, settings: HelloDaggerSettings) -> PydanticAIAgent:
        return cls(
            settings.agent_model,
            model_settings=resolve_model_settings(settings),
            request_limit=settings.agent_request_limit,
            tool_retries=settings.agent_tool_retries,
        )

    async def run(self, env: AgentEnv, prompt: str) -> AgentEnv:
        agent = PydanticAgent(
            self.model,
            deps_type=AgentDeps,
            output_type=str,
            system_prompt=describe_environment(env),
            tools=TOOLS,
            retries=self.tool_retries,
            model_settings=self.model_settings,
        )
        deps = AgentDeps(env=env)
        result = await agent.run(
            render_prompt(prompt, env),
            deps=deps,
            usage_limits=UsageLimits(request_limit=self.request_limit),
        )
        logger.info(
            "Agent finished: outputs_bound=%s, requests=%d, summary=%r",
            deps.env.is_complete,
            request_count(result),
            result.output[:200],
        )
        return deps.env
