from __future__ import annotations

from typing import Callable

from fastapi import Depends, Header

from app.dependencies.services import get_auth_service
from app.schemas.auth import Actor
from app.services import AuthService
from app.services.exceptions import AuthenticationError, ForbiddenError


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must use the Bearer scheme")
    return token.strip()


async def get_current_actor(
    authorization: str | None = Header(default=None),
    auth: AuthService = Depends(get_auth_service),
) -> Actor:
    return await auth.authenticate(_bearer_token(authorization))


def require_permission(action: str, resource: str) -> Callable[..., Actor]:
    """Build a dependency that yields the actor once ``action`` on ``resource`` is allowed."""

    async def dependency(
        actor: Actor = Depends(get_current_actor),
        auth: AuthService = Depends(get_auth_service),
    ) -> Actor:
        auth.require_permission(actor, action, resource)
        return actor

    return dependency


def company_of(actor: Actor) -> str:
    if not actor.company_id:
        raise ForbiddenError("User is not attached to a company")
    return actor.company_id
