"""Session lookup against Supabase auth, and the admin-only policy.

A lookup that cannot complete for any reason is treated as "no session":
the pipeline turns that into an auth error frame.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import httpx

from blog_engine.schemas import CurrentUser

if TYPE_CHECKING:
    from fastapi import Request

    from blog_engine.config import SupabaseConfig

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sb-access-token"


def token_from_request(request: Request) -> str | None:
    """Bearer token from the Authorization header, else the session cookie."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(SESSION_COOKIE) or None


class SupabaseAuth:
    def __init__(self, config: SupabaseConfig):
        self.config = config

    async def get_current_user(
        self, client: httpx.AsyncClient, token: str | None
    ) -> CurrentUser | None:
        if not token:
            return None

        base_url = self.config.url()
        anon_key = self.config.anon_key()
        if not base_url or not anon_key:
            logger.warning("Supabase auth is not configured; treating request as anonymous")
            return None

        try:
            response = await client.get(
                f"{base_url}/auth/v1/user",
                headers={"apikey": anon_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Session lookup failed: {e}")
            return None

        if not response.is_success:
            logger.info(f"Session rejected by auth provider ({response.status_code})")
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning("Auth provider returned a non-JSON user document")
            return None
        if not isinstance(data, dict) or not data.get("id"):
            return None
        return CurrentUser(id=str(data["id"]), email=data.get("email"))


class AuthorizationPolicy(Protocol):
    def is_authorized(self, user: CurrentUser) -> bool: ...


class AdminEmailPolicy:
    """Exactly one configured principal may generate posts."""

    def __init__(self, admin_email: str):
        self.admin_email = admin_email.strip().lower()

    def is_authorized(self, user: CurrentUser) -> bool:
        if not self.admin_email or not user.email:
            return False
        return user.email.strip().lower() == self.admin_email
