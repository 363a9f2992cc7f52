"""Listing routes: ``GET|OPTIONS /l/{resource_type}[/{resource_id}]``.

Browsers call these cross-origin, so the routes live on a sub-application
mounted at ``/l`` behind a permissive CORSMiddleware; webhook and task
routes stay outside it. Resource types on the deny list answer 403
whatever the ID.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from slowapi import Limiter

from hookvault.errors import StoreError
from hookvault.query import iter_listing, open_listing
from hookvault.web.middleware import install_rate_limiting

logger = logging.getLogger(__name__)

LISTING_PREFIX = "/l"
CORS_MAX_AGE = 3600


def build_listing_app(parent: FastAPI, limiter: Limiter) -> FastAPI:
    """Sub-application serving the listing routes.

    Settings and the store are read from ``parent.state`` on every request,
    so collaborators swapped on the parent app take effect here too.
    """
    listing = FastAPI(title="hookvault listing")
    limit = limiter.limit(parent.state.settings.listing_rate_limit)

    async def list_resources(resource_type: str, resource_id: str | None) -> Response:
        settings = parent.state.settings
        if resource_type in settings.denied_resource_types:
            logger.warning("Listing of denied resource type '%s' refused", resource_type)
            return JSONResponse({"status": "forbidden"}, status_code=403)

        try:
            records = await asyncio.to_thread(
                open_listing, parent.state.store, resource_type, resource_id
            )
        except StoreError:
            logger.exception("Listing %s/%s failed", resource_type, resource_id or "*")
            return JSONResponse({"status": "error"}, status_code=500)

        return StreamingResponse(
            iter_listing(records, settings.max_response_size),
            media_type="application/json",
        )

    @listing.get("/{resource_type}")
    @limit
    async def list_by_type(request: Request, resource_type: str):
        """Every archived record of one resource type, newest first."""
        return await list_resources(resource_type, None)

    @listing.get("/{resource_type}/{resource_id}")
    @limit
    async def list_by_resource(request: Request, resource_type: str, resource_id: str):
        """Every archived record of one resource, newest first."""
        return await list_resources(resource_type, resource_id)

    install_rate_limiting(listing, limiter)

    # Answers OPTIONS preflights; allow_headers=["*"] echoes the requested headers
    listing.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        max_age=CORS_MAX_AGE,
    )
    return listing


def register_listing_routes(app: FastAPI, limiter: Limiter) -> None:
    """Mount the listing sub-application at ``/l``, rate limited by ``limiter``."""
    app.mount(LISTING_PREFIX, build_listing_app(app, limiter))
    logger.info("Listing routes mounted: %s/{type}[/{id}]", LISTING_PREFIX)
