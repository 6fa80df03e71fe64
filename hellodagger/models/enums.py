"""Shared enumerations."""

from __future__ import annotations

from enum import StrEnum

# -- Engine ------------------------------------------------------------------


class EngineMode(StrEnum):
    DOCKER = "docker"
    LOCAL = "local"


# -- Agent environment -------------------------------------------------------


class BindingKind(StrEnum):
    """Value kinds an agent environment binding can hold."""

    STRING = "string"
    WORKSPACE = "workspace"


class BindingRole(StrEnum):
    INPUT = "input"
    OUTPUT = "output"
