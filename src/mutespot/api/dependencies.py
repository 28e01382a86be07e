"""Dependency injection for API endpoints."""

from typing import cast

from fastapi import Header, HTTPException, Request

from mutespot.application.services.enforcement_service import EnforcementService


# Hey future me, the service is built once in the lifespan and hung on app.state. If it's
# missing the app didn't start properly - 503, not a crash.
def get_enforcement_service(request: Request) -> EnforcementService:
    """Get the enforcement service from app state.

    Raises:
        HTTPException: 503 if the service is not initialized
    """
    if not hasattr(request.app.state, "enforcement_service"):
        raise HTTPException(status_code=503, detail="Enforcement service not initialized")
    return cast(EnforcementService, request.app.state.enforcement_service)


def parse_bearer_token(authorization: str) -> str:
    """Strip an optional (case-insensitive) "Bearer " prefix."""
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return authorization.strip()


# The provider access token rides in the Authorization header. It is optional because a
# connection_id (resolved through the token provider) works just as well.
async def get_provider_token(authorization: str | None = Header(default=None)) -> str | None:
    if authorization is None or not authorization.strip():
        return None
    return parse_bearer_token(authorization) or None
