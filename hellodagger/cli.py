from __future__ import annotations

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import click

if TYPE_CHECKING:
    from hellodagger.main import HelloDagger

T = TypeVar("T")


@click.group()
@click.option("--log-level", default=None, help="Log level (default: from HELLODAGGER_LOG_LEVEL or INFO).")
@click.option("-v", "--verbose", count=True, help="Log more; each -v lowers the configured level one step.")
def main(log_level: str | None, verbose: int) -> None:
    """hellodagger - build, test, publish and develop a Node web app in containers."""
    from hellodagger.log import level_for_verbosity, setup_logging
    from hellodagger.settings import get_settings

    setup_logging(log_level or level_for_verbosity(verbose, get_settings().log_level))


def _source_options(func: Callable[..., None]) -> Callable[..., None]:
    """Add the --source and --timeout options shared by every operation."""
    func = click.option(
        "--timeout", default=None, type=float, help="Abort the whole operation after this many seconds."
    )(func)
    return click.option(
        "--source",
        default=".",
        show_default=True,
        type=click.Path(exists=True, file_okay=False, path_type=Path),
        help="Source directory of the application.",
    )(func)


def _run(operation: Callable[[HelloDagger], Awaitable[T]], timeout: float | None) -> T:
    """Run ``operation`` against a freshly wired HelloDagger, mapping failures to a clean exit."""
    import anyio

    from hellodagger.agent.env import AgentIncompleteError, BindingError
    from hellodagger.agent.session import ValidationGateError
    from hellodagger.engine.base import EngineError
    from hellodagger.main import create_hellodagger
    from hellodagger.tracker.base import TrackerError

    async def _main() -> T:
        app = create_hellodagger()
        with anyio.fail_after(timeout):
            return await operation(app)

    try:
        return anyio.run(_main)
    except (EngineError, ValidationGateError, AgentIncompleteError, BindingError, TrackerError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    except TimeoutError as exc:
        msg = f"operation timed out after {timeout}s"
        raise click.ClickException(msg) from exc


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


@main.command()
@_source_options
def test(source: Path, timeout: float | None) -> None:
    """Run the unit tests and print their output."""

    async def _op(app: HelloDagger) -> str:
        return await app.test(await app.load_source(source))

    click.echo(_run(_op, timeout))


@main.command()
@_source_options
@click.option(
    "--output",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Also copy the served directory here.",
)
def build(source: Path, timeout: float | None, output: Path | None) -> None:
    """Build the application image description."""
    from hellodagger.pipeline import SERVE_PATH

    async def _op(app: HelloDagger) -> str:
        image = await app.build(await app.load_source(source))
        bundle = image.directory_at(SERVE_PATH)
        if output is not None and bundle is not None:
            await app.store.materialize(bundle, output)
        ports = ", ".join(str(p) for p in image.exposed_ports)
        return f"image: {image.image}\nserving: {SERVE_PATH} <- {bundle}\nports: {ports}"

    click.echo(_run(_op, timeout))


@main.command()
@_source_options
def publish(source: Path, timeout: float | None) -> None:
    """Test, build and push the application image; print its address."""

    async def _op(app: HelloDagger) -> str:
        return await app.publish(await app.load_source(source))

    click.echo(_run(_op, timeout))


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


@main.command()
@click.argument("assignment")
@_source_options
@click.option(
    "--output",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Copy the developed source tree here.",
)
def develop(assignment: str, source: Path, timeout: float | None, output: Path | None) -> None:
    """Let the coding agent complete ASSIGNMENT and validate the result."""

    async def _op(app: HelloDagger) -> str:
        result = await app.develop(assignment, await app.load_source(source))
        if output is not None:
            await app.store.materialize(result, output)
            return f"{result} -> {output}"
        return f"{result} at {result.root}"

    click.echo(_run(_op, timeout))


@main.command("develop-issue")
@click.option("--issue", "issue_id", required=True, type=int, help="GitHub issue number.")
@click.option("--repository", required=True, help="GitHub repository (owner/name or URL).")
@click.option("--token", default=None, help="GitHub token (default: from HELLODAGGER_GITHUB_TOKEN).")
@_source_options
def develop_issue(issue_id: int, repository: str, token: str | None, source: Path, timeout: float | None) -> None:
    """Solve a GitHub issue with the coding agent and open a pull request."""
    from pydantic import SecretStr

    from hellodagger.settings import get_settings

    secret = SecretStr(token) if token else get_settings().github_token
    if secret is None:
        msg = "a GitHub token is required (--token or HELLODAGGER_GITHUB_TOKEN)"
        raise click.UsageError(msg)

    async def _op(app: HelloDagger) -> str:
        return await app.develop_issue(secret, issue_id, repository, await app.load_source(source))

    click.echo(_run(_op, timeout))


if __name__ == "__main__":
    main()
