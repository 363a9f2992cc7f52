"""HTTP surface: webhook intake, task handlers, listings and purge triggers."""

from __future__ import annotations

from hookvault.web.admin import register_admin_routes
from hookvault.web.listing import register_listing_routes
from hookvault.web.middleware import build_limiter
from hookvault.web.tasks import register_task_routes
from hookvault.web.webhooks import register_webhook_routes

__all__ = [
    "build_limiter",
    "register_admin_routes",
    "register_listing_routes",
    "register_task_routes",
    "register_webhook_routes",
]
