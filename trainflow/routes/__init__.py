"""HTTP, SSE and WebSocket routes.

``health``, ``mqtt`` and ``stream`` each expose ``create_*_routes(state)``;
:func:`create_router` mounts them all on one router.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from .health import create_health_routes
from .mqtt import create_mqtt_routes
from .stream import create_stream_routes

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_router(state: RuntimeState) -> APIRouter:
    """Assemble all domain-specific route groups into one router."""
    router = APIRouter()
    router.include_router(create_health_routes(state))
    router.include_router(create_mqtt_routes(state))
    router.include_router(create_stream_routes(state))
    return router
