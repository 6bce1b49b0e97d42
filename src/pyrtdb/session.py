"""Session context for authenticated store access.

A :class:`Session` is created once an ID token has been obtained from the
identity provider and is passed explicitly to the store. Signing out
drops it (see :meth:`pyrtdb.store.rest.RestDocumentStore.invalidate_session`).
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from typing import Any

from pydantic import BaseModel, ConfigDict

from pyrtdb.exceptions import RtdbAuthenticationError, RtdbPermissionError


def _decode_jwt_claims(id_token: str) -> dict[str, Any]:
    """Read the claims segment of a JWT.

    The signature is not verified; the store does that server-side.
    """
    parts = id_token.split(".")
    if len(parts) != 3:
        raise RtdbAuthenticationError("ID token is not a JWT")
    segment = parts[1]
    segment += "=" * (-len(segment) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except (binascii.Error, ValueError) as exc:
        raise RtdbAuthenticationError("ID token claims are not valid base64 JSON") from exc
    if not isinstance(claims, dict):
        raise RtdbAuthenticationError("ID token claims are not an object")
    return claims


class Session(BaseModel):
    """Authenticated user context.

    Parameters
    ----------
    user_id : str
        The authenticated user's ID.
    id_token : str
        Token forwarded to the store with every request.
    is_admin : bool
        Whether the token carries the ``admin`` custom claim.
    expires_at : float or None
        Epoch seconds after which the token is no longer accepted.
        ``None`` means no known expiry.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    user_id: str
    id_token: str
    is_admin: bool = False
    expires_at: float | None = None

    @classmethod
    def from_id_token(cls, id_token: str) -> Session:
        """Build a session from the claims of an already-issued ID token."""
        token = id_token.strip()
        claims = _decode_jwt_claims(token)
        user_id = claims.get("user_id") or claims.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise RtdbAuthenticationError("ID token has no user_id/sub claim")
        exp = claims.get("exp")
        return cls(
            user_id=user_id,
            id_token=token,
            is_admin=claims.get("admin") is True,
            expires_at=float(exp) if isinstance(exp, (int, float)) else None,
        )

    @property
    def is_expired(self) -> bool:
        """Whether the token has passed its ``exp`` claim."""
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at


def require_admin(session: Session | None) -> Session:
    """Return *session* if it may use the database admin screens."""
    if session is None or session.is_expired:
        raise RtdbAuthenticationError("Not signed in")
    if not session.is_admin:
        raise RtdbPermissionError(f"User {session.user_id} is not an administrator")
    return session
