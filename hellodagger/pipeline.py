"""Build, test and publish pipeline for the Node application.

Every operation starts from ``build_env``: the Node image with the source
snapshot mounted at ``/src``, the shared npm cache mounted and dependencies
installed.  A failing install makes the whole container invalid, so nothing
downstream runs on a half-installed tree.
"""

from __future__ import annotations

import logging
import random

from hellodagger.engine.base import ExecutionEngine
from hellodagger.engine.container import CacheVolume, Container
from hellodagger.models.snapshot import SourceSnapshot
from hellodagger.settings import HelloDaggerSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SOURCE_PATH = "/src"
NPM_CACHE_PATH = "/root/.npm"
BUILD_OUTPUT_PATH = "./dist"
SERVE_PATH = "/usr/share/nginx/html"
SERVE_PORT = 80
DEPENDENCY_DIR = "node_modules"

INSTALL_COMMAND = ("npm", "install")
TEST_COMMAND = ("npm", "run", "test:unit", "run")
BUILD_COMMAND = ("npm", "run", "build")


class Pipeline:
    """Container pipeline bound to one execution engine."""

    def __init__(self, engine: ExecutionEngine, settings: HelloDaggerSettings) -> None:
        self.engine = engine
        self.settings = settings

    # -- Environments ----------------------------------------------------------

    def base_env(self, source: SourceSnapshot) -> Container:
        """Node image with the source and npm cache mounted, nothing installed."""
        return (
            self.engine.container()
            .from_(self.settings.node_image)
            .with_directory(SOURCE_PATH, source)
            .with_mounted_cache(NPM_CACHE_PATH, CacheVolume(self.settings.cache_key))
            .with_workdir(SOURCE_PATH)
        )

    def build_env(self, source: SourceSnapshot) -> Container:
        """Ready-to-use development environment with dependencies installed."""
        return self.base_env(source).with_exec(INSTALL_COMMAND, setup=True)

    # -- Operations ------------------------------------------------------------

    async def test(self, source: SourceSnapshot) -> str:
        """Run the unit tests and return their output.  Raises ``CommandError`` on failure."""
        logger.info("Testing snapshot %s", source.short_id)
        output = await self.build_env(source).with_exec(TEST_COMMAND).stdout()
        logger.info("Tests passed for snapshot %s", source.short_id)
        return output

    async def build(self, source: SourceSnapshot) -> Container:
        """Build the application and layer the bundle into the static serving image."""
        logger.info("Building snapshot %s", source.short_id)
        bundle = await self.build_env(source).with_exec(BUILD_COMMAND).directory(BUILD_OUTPUT_PATH)
        return (
            self.engine.container()
            .from_(self.settings.serve_image)
            .with_directory(SERVE_PATH, bundle)
            .with_exposed_port(SERVE_PORT)
        )

    async def publish(self, source: SourceSnapshot) -> str:
        """Test, build and push the application image.  Returns the pushed reference."""
        await self.test(source)
        image = await self.build(source)
        address = self.publish_address()
        logger.info("Publishing snapshot %s to %s", source.short_id, address)
        return await image.publish(address)

    def publish_address(self) -> str:
        """Pick ``{registry}/{image_name}-{n}`` with a random ``n`` below ``publish_tag_range``."""
        suffix = random.randrange(self.settings.publish_tag_range)  # noqa: S311
        return f"{self.settings.registry}/{self.settings.image_name}-{suffix}"
