"""Admin authorization for the backup endpoints.

Session management lives outside this package: the app is given a
``SessionProvider`` that maps a request to the signed-in user (or
``None``).  Admin rights and the protected identity are then looked up
through the row client.
"""

import hmac
import logging
from typing import Protocol

from fastapi import Request
from pydantic import BaseModel

from store_backup.adapters.base import RowClient
from store_backup.backup.errors import AuthorizationError
from store_backup.backup.registry import PROTECTED_AUTH_USERS, PROTECTED_USER_PROFILES

logger = logging.getLogger(__name__)


class Session(BaseModel):
    """Signed-in user as reported by the session provider."""

    email: str
    user_id: str | None = None


class SessionProvider(Protocol):
    async def __call__(self, request: Request) -> Session | None: ...


class BearerTokenSessionProvider:
    """Session provider for a standalone server.

    Accepts ``Authorization: Bearer <token>`` with a fixed shared token
    and takes the acting user's email from ``X-User-Email``, falling back
    to ``default_email``.
    """

    def __init__(self, token: str, default_email: str | None = None):
        self._token = token
        self._default_email = default_email

    async def __call__(self, request: Request) -> Session | None:
        header = request.headers.get("authorization", "")
        scheme, _, supplied = header.partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(supplied, self._token):
            return None
        email = request.headers.get("x-user-email") or self._default_email
        if not email:
            return None
        return Session(email=email)


class AdminContext(BaseModel):
    """Authorized admin for one request."""

    email: str
    protected_id: str | None = None


async def resolve_admin(adapter: RowClient, session: Session | None) -> AdminContext:
    """Check that ``session`` belongs to an admin and find its protected id.

    Raises:
        AuthorizationError: 401 without a session, 403 for non-admins.
    """
    if session is None or not session.email:
        raise AuthorizationError("Not authenticated", status_code=401)

    profile_filter = (
        {"id": session.user_id} if session.user_id else {"email": session.email}
    )
    profile = await adapter.select(
        PROTECTED_USER_PROFILES, "is_admin", filters=profile_filter, limit=1
    )
    if profile.error:
        logger.warning("Admin lookup for %s failed: %s", session.email, profile.error)
    if not profile.data or not profile.data[0].get("is_admin"):
        raise AuthorizationError("Administrator rights are required for backups")

    user = await adapter.select(
        PROTECTED_AUTH_USERS, "id", filters={"email": session.email}, limit=1
    )
    protected_id = user.data[0].get("id") if user.data else None
    if protected_id is None:
        logger.warning("No %s row for %s; nothing will be protected", PROTECTED_AUTH_USERS, session.email)

    return AdminContext(email=session.email, protected_id=protected_id)
