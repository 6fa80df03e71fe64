"""Execution engine: container descriptions and the adapters that run them.

- **container**: Immutable ``Container`` builder (image, mounts, caches, steps, ports)
- **base**: ``ExecutionEngine`` protocol, error taxonomy, scratch evaluation loop
- **docker**: Steps via ``docker run``, publishing via ``docker build`` + ``docker push``
- **local**: Steps as host processes (no image, no caches, no publishing)
"""

from hellodagger.engine.base import (
    CommandError,
    EngineError,
    EnvironmentSetupError,
    Evaluation,
    ExecResult,
    ExecutionEngine,
    PublishConflictError,
    ScratchEngine,
)
from hellodagger.engine.container import CacheVolume, Container, Exec
from hellodagger.engine.docker import DockerEngine
from hellodagger.engine.local import LocalEngine

__all__ = [
    "CacheVolume",
    "CommandError",
    "Container",
    "DockerEngine",
    "EngineError",
    "EnvironmentSetupError",
    "Evaluation",
    "Exec",
    "ExecResult",
    "ExecutionEngine",
    "LocalEngine",
    "PublishConflictError",
    "ScratchEngine",
]
