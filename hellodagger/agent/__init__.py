"""Coding agent for the develop workflow.

- **env**: Typed input/output bindings (``AgentEnv``)
- **workspace**: File and command tools over a source snapshot
- **base**: ``Agent`` protocol
- **prompt**: Prompt document loading and Jinja2 rendering
- **llm**: pydantic-ai implementation of ``Agent``
- **session**: ``develop`` with the validation gate
"""

from hellodagger.agent.base import Agent
from hellodagger.agent.env import AgentEnv, AgentIncompleteError, Binding, BindingError
from hellodagger.agent.session import AgentSession, ValidationGateError
from hellodagger.agent.workspace import Workspace

__all__ = [
    "Agent",
    "AgentEnv",
    "AgentIncompleteError",
    "AgentSession",
    "Binding",
    "BindingError",
    "ValidationGateError",
    "Workspace",
]
