"""Service configuration loaded from HELLODAGGER_* environment variables."""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from hellodagger.models.enums import EngineMode


class HelloDaggerSettings(BaseSettings):
    """Pipeline, agent and tracker settings.

    All fields are read from environment variables with the ``HELLODAGGER_``
    prefix.  For example, ``HELLODAGGER_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    LLM provider keys (OPENAI_API_KEY, ANTHROPIC_API_KEY, ...) are **not**
    managed here -- they are read directly by pydantic-ai from its own
    provider conventions.
    """

    model_config = SettingsConfigDict(
        env_prefix="HELLODAGGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Snapshot storage ------------------------------------------------------
    data_root: str = "~/.cache/hellodagger"
    """Root directory for the content-addressed snapshot store."""

    data_prefix: str | None = None
    """Optional namespace inserted into all data paths (``{data_root}/{data_prefix}/...``)."""

    source_exclude: list[str] = Field(default_factory=lambda: [".git", "node_modules"])
    """Top-level paths left out when a source directory is imported."""

    # -- Execution engine ------------------------------------------------------
    engine_mode: EngineMode = EngineMode.DOCKER
    docker_bin: str = "docker"

    node_image: str = "node:21-slim"
    serve_image: str = "nginx:1.25-alpine"

    cache_key: str = "node"
    """Logical name of the shared package-manager cache."""

    cache_volume_prefix: str = "hellodagger-cache"
    """Docker volume names are ``{cache_volume_prefix}-{key}``."""

    command_timeout: float | None = None
    """Seconds allowed for a single container command.  ``None`` waits forever."""

    # -- Publishing ------------------------------------------------------------
    registry: str = "ttl.sh"
    image_name: str = "hello-dagger"
    publish_tag_range: int = 10_000_000
    """Published tags are ``{image_name}-{n}`` with ``0 <= n < publish_tag_range``."""

    # -- Agent -----------------------------------------------------------------
    agent_model: str = "anthropic:claude-sonnet-4-0"
    agent_temperature: float | None = None
    agent_max_tokens: int | None = None
    agent_request_limit: int = 100
    agent_tool_retries: int = 3
    """Times a tool may reject the model's arguments before the run fails."""

    develop_prompt_path: str | None = None
    """Override for the packaged ``develop_prompt.md``."""

    develop_max_attempts: int = 1
    """Agent attempts allowed per ``develop`` call before a failing gate is final."""

    # -- Tracker ---------------------------------------------------------------
    github_token: SecretStr | None = None
    github_api_base_url: str = "https://api.github.com"
    github_timeout: float = 30.0
    default_branch: str = "main"
    change_branch_prefix: str = "hellodagger"


def get_settings() -> HelloDaggerSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``get_settings.cache_clear()`` in tests to force a
    re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> HelloDaggerSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return HelloDaggerSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
get_settings.cache_clear = _get_settings_cached.cache_clear  # type: ignore[attr-defined]
