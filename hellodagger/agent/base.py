"""Agent interface.

An agent consumes an ``AgentEnv`` and a prompt document, works through the
capabilities bound as inputs, and returns the environment with its output
slots filled.  The LLM agent, scripted agents and test doubles all implement
this protocol, so ``AgentSession`` never depends on a specific backend.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from hellodagger.agent.env import AgentEnv


@runtime_checkable
class Agent(Protocol):
    async def run(self, env: AgentEnv, prompt: str) -> AgentEnv:
        """Complete the task described by ``prompt`` and return the completed environment."""
        ...
