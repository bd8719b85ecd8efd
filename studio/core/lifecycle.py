"""Lifecycle hooks for startup diagnostics and session teardown."""

from __future__ import annotations

from studio.core.container import AppContainer
from studio.infra.observability.logger import get_logger

logger = get_logger(__name__)


def on_startup(container: AppContainer) -> None:
    stats = container.store.health()
    logger.info("Document store loaded: %s", stats)


async def on_shutdown(container: AppContainer) -> None:
    await container.sessions.close_all()
    logger.info("Artifact studio shutdown complete.")
