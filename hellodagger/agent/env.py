"""Typed input/output bindings handed to an agent.

An ``AgentEnv`` maps names to tagged values: plain strings or ``Workspace``
capabilities.  Inputs are fixed when the environment is built; outputs are
declared as empty slots that the agent fills with ``bind_output`` before it
finishes.  Every builder call returns a new environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING

from hellodagger.agent.workspace import Workspace
from hellodagger.models.enums import BindingKind, BindingRole

if TYPE_CHECKING:
    from collections.abc import Mapping


class BindingError(LookupError):
    """Raised for unknown bindings or a value of the wrong kind."""


class AgentIncompleteError(RuntimeError):
    """Raised when the agent finished without filling a required output."""


@dataclass(frozen=True)
class Binding:
    name: str
    kind: BindingKind
    role: BindingRole
    description: str
    value: str | Workspace | None = None

    @property
    def is_bound(self) -> bool:
        return self.value is not None

    def as_string(self) -> str:
        return self._expect(BindingKind.STRING)  # type: ignore[return-value]

    def as_workspace(self) -> Workspace:
        return self._expect(BindingKind.WORKSPACE)  # type: ignore[return-value]

    def _expect(self, kind: BindingKind) -> str | Workspace:
        if self.kind != kind:
            msg = f"binding {self.name!r} holds a {self.kind}, not a {kind}"
            raise BindingError(msg)
        if self.value is None:
            msg = f"output {self.name!r} was never bound"
            raise AgentIncompleteError(msg)
        return self.value


@dataclass(frozen=True)
class AgentEnv:
    """Inputs and outputs of one agent session."""

    privileged: bool = False
    bindings: tuple[Binding, ...] = field(default=(), repr=False)

    # -- Builders --------------------------------------------------------------

    def with_string_input(self, name: str, value: str, description: str) -> AgentEnv:
        return self._declare(Binding(name, BindingKind.STRING, BindingRole.INPUT, description, value))

    def with_workspace_input(self, name: str, workspace: Workspace, description: str) -> AgentEnv:
        return self._declare(Binding(name, BindingKind.WORKSPACE, BindingRole.INPUT, description, workspace))

    def with_string_output(self, name: str, description: str) -> AgentEnv:
        return self._declare(Binding(name, BindingKind.STRING, BindingRole.OUTPUT, description))

    def with_workspace_output(self, name: str, description: str) -> AgentEnv:
        return self._declare(Binding(name, BindingKind.WORKSPACE, BindingRole.OUTPUT, description))

    def bind_output(self, name: str, value: str | Workspace) -> AgentEnv:
        """Fill an output slot.  The value must match the slot's declared kind."""
        slot = self.output(name)
        actual = BindingKind.WORKSPACE if isinstance(value, Workspace) else BindingKind.STRING
        if actual != slot.kind or not isinstance(value, (str, Workspace)):
            msg = f"output {name!r} expects a {slot.kind}, got {type(value).__name__}"
            raise BindingError(msg)
        bindings = tuple(replace(b, value=value) if b is slot else b for b in self.bindings)
        return replace(self, bindings=bindings)

    # -- Queries ---------------------------------------------------------------

    @property
    def inputs(self) -> Mapping[str, Binding]:
        return MappingProxyType({b.name: b for b in self.bindings if b.role == BindingRole.INPUT})

    @property
    def outputs(self) -> Mapping[str, Binding]:
        return MappingProxyType({b.name: b for b in self.bindings if b.role == BindingRole.OUTPUT})

    def input(self, name: str) -> Binding:
        try:
            return self.inputs[name]
        except KeyError:
            msg = f"no input named {name!r}"
            raise BindingError(msg) from None

    def output(self, name: str) -> Binding:
        try:
            return self.outputs[name]
        except KeyError:
            msg = f"no output named {name!r}"
            raise BindingError(msg) from None

    @property
    def is_complete(self) -> bool:
        return all(b.is_bound for b in self.outputs.values())

    def string_inputs(self) -> dict[str, str]:
        return {b.name: b.value for b in self.inputs.values() if isinstance(b.value, str)}

    # -- Internals -------------------------------------------------------------

    def _declare(self, binding: Binding) -> AgentEnv:
        if any(b.name == binding.name for b in self.bindings):
            msg = f"binding {binding.name!r} is already declared"
            raise BindingError(msg)
        return replace(self, bindings=(*self.bindings, binding))
