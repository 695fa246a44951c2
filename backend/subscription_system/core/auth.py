"""Caller identity for FastAPI routes.

Authentication happens upstream; the gateway in front of this service
forwards the authenticated user's id in a header (``X-User-Id`` by default).
"""

from dataclasses import dataclass

from fastapi import HTTPException, Request

from subscription_system.core.config import get_settings


@dataclass(frozen=True)
class AuthenticatedUser:
    """User identity forwarded by the upstream auth layer."""

    user_id: str


async def require_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency returning the forwarded user, 401 when absent."""
    header = get_settings().user_id_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing authenticated user")

    request.state.user_id = user_id
    return AuthenticatedUser(user_id=user_id)
