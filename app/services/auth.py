from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from app.clients.identity import IdentityServiceClient
from app.schemas.auth import Actor, UserRole
from app.services.exceptions import AuthenticationError, PermissionDeniedError
from app.services.permissions import role_allows
from app.services.store import BillingStore

logger = logging.getLogger(__name__)


def _role_of(profile: Dict[str, Any]) -> UserRole:
    raw = str(profile.get("role") or UserRole.USER.value).upper()
    try:
        return UserRole(raw)
    except ValueError:
        logger.warning("Unknown role %s for user %s; treating as %s", raw, profile.get("id"), UserRole.USER.value)
        return UserRole.USER


class AuthService:
    """Turns credentials into actors and answers permission questions.

    In mock mode tokens and profiles come from the store's user table;
    otherwise the identity provider is queried over HTTP.
    """

    def __init__(self, client: IdentityServiceClient, store: BillingStore) -> None:
        self._client = client
        self._store = store

    async def authenticate(self, token: str | None) -> Actor:
        if not token:
            raise AuthenticationError("Missing bearer token")

        if self._client.use_mock_data:
            profile = await self._store.users.find_by_token(token)
        else:
            user = await self._client.get_user(token)
            if user is None:
                raise AuthenticationError("Invalid or expired token")
            profile = await self._client.get_profile(user["id"])
            if profile is None:
                # Known to the provider but without an application profile.
                profile = {"id": user["id"], "email": user.get("email", "")}

        if profile is None:
            raise AuthenticationError("Invalid or expired token")
        return self._to_actor(profile)

    async def get_actor(self, actor_id: str) -> Optional[Actor]:
        if self._client.use_mock_data:
            profile = await self._store.users.get(actor_id)
        else:
            profile = await self._client.get_profile(actor_id)
        return self._to_actor(profile) if profile else None

    async def check_permission(self, actor_id: str, action: str, resource: str) -> bool:
        actor = await self.get_actor(actor_id)
        if actor is None:
            return False
        return role_allows(actor.role, action, resource, is_active=actor.is_active)

    def require_permission(self, actor: Actor, action: str, resource: str) -> None:
        if not role_allows(actor.role, action, resource, is_active=actor.is_active):
            logger.warning("Actor %s denied %s on %s", actor.id, action, resource)
            raise PermissionDeniedError(action, resource)

    @staticmethod
    def _to_actor(profile: Dict[str, Any]) -> Actor:
        return Actor(
            id=str(profile["id"]),
            email=profile.get("email") or "",
            name=profile.get("name"),
            role=_role_of(profile),
            company_id=profile.get("company_id"),
            is_active=profile.get("is_active", True),
        )
