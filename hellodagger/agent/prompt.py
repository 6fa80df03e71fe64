"""Prompt loading and rendering with Jinja2 template support.

Prompt documents are markdown files that may contain Jinja2 syntax.  They
are rendered with the environment's string inputs as variables, so the
develop prompt can embed the assignment text with ``{{ assignment }}``.

Extra variables available to every template:

- ``date``    : str -- current date (YYYY-MM-DD)
- ``inputs``  : list[str] -- names of all input bindings
- ``outputs`` : list[str] -- names of all output bindings
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import jinja2

from hellodagger.agent.env import AgentEnv

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"
DEVELOP_PROMPT = "develop_prompt.md"


def load_prompt(name: str = DEVELOP_PROMPT, *, override: str | Path | None = None) -> str:
    """Read a packaged prompt document, or ``override`` when given."""
    path = Path(override) if override else PROMPTS_DIR / name
    return path.read_text(encoding="utf-8")


def render_prompt(
    document: str,
    env: AgentEnv,
    *,
    extra_vars: dict[str, object] | None = None,
) -> str:
    """Render a prompt document against the environment's bindings.

    If the document contains no Jinja2 syntax, it is returned unchanged.
    """
    template_vars: dict[str, object] = {
        "date": datetime.now(tz=UTC).strftime("%Y-%m-%d"),
        "inputs": list(env.inputs),
        "outputs": list(env.outputs),
        **env.string_inputs(),
    }

    if extra_vars:
        template_vars.update(extra_vars)

    # Fast path: skip Jinja2 if no template syntax detected
    if "{{" not in document and "{%" not in document:
        return document

    jinja_env = jinja2.Environment(autoescape=False, undefined=jinja2.StrictUndefined)  # noqa: S701
    return jinja_env.from_string(document).render(**template_vars)


def describe_environment(env: AgentEnv) -> str:
    """Summarize bindings for the agent's system prompt."""
    lines = ["You work inside an environment with named bindings."]
    if env.inputs:
        lines.append("")
        lines.append("Inputs:")
        for binding in env.inputs.values():
            lines.append(f"- `{binding.name}` ({binding.kind}): {binding.description}")
    if env.outputs:
        lines.append("")
        lines.append("Outputs you must bind with `bind_output` before finishing:")
        for binding in env.outputs.values():
            lines.append(f"- `{binding.name}` ({binding.kind}): {binding.description}")
    return "\n".join(lines)
