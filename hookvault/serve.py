"""hookvault web process: app factory and uvicorn entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from hookvault.config import Settings, get_settings
from hookvault.store import ArchiveStore, create_store
from hookvault.tasks.dispatcher import TaskDispatcher
from hookvault.web import (
    build_limiter,
    register_admin_routes,
    register_listing_routes,
    register_task_routes,
    register_webhook_routes,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    store: ArchiveStore | None = None,
    dispatcher: TaskDispatcher | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    Collaborators not passed in are built from ``settings``: the archive
    store per ``backend``, a Redis task queue, and an outbound HTTP client
    opened for the app's lifetime.

    Raises:
        ConfigurationError: no application key is configured
    """
    settings = settings or get_settings()
    settings.require_app_key()

    if store is None:
        store = create_store(settings)
    if dispatcher is None:
        from hookvault.tasks.redis_queue import RedisTaskQueue

        dispatcher = RedisTaskQueue.from_url(settings.redis_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_client = app.state.http is None
        if owns_client:
            app.state.http = httpx.AsyncClient(timeout=settings.fetch_timeout)
        logger.info("hookvault started (backend=%s)", settings.backend)
        try:
            yield
        finally:
            if owns_client:
                await app.state.http.aclose()
                app.state.http = None
            store.close()
            logger.info("hookvault stopped")

    app = FastAPI(title="hookvault", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.dispatcher = dispatcher
    app.state.http = http_client

    limiter = build_limiter(settings)
    register_webhook_routes(app)
    register_task_routes(app)
    register_listing_routes(app, limiter)
    register_admin_routes(app)
    return app


def main() -> None:
    """Entry point for the ``hookvault`` web process."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="hookvault web process")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
