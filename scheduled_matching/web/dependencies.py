"""Shared FastAPI dependencies: service container and operator identity."""

from fastapi import Request

from scheduled_matching.container import Services

ACTOR_HEADER = "X-Admin-User"
DEFAULT_ACTOR = "admin"


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_actor(request: Request) -> str:
    """Operator name for audit fields. Authentication happens upstream."""
    return (request.headers.get(ACTOR_HEADER) or "").strip() or DEFAULT_ACTOR
