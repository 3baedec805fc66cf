"""
Bearer token verification.

Tokens are issued by the managed auth provider (HS256, `sub` = user UUID,
`email` claim). This module only verifies them; sign-up, login and role
assignment live with the provider.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from tapn.core.config import get_settings
from tapn.core.exceptions import Unauthenticated

ROLE_ADMIN = "admin"
ROLE_PARTNER = "partner"
ROLE_USER = "user"


@dataclass(frozen=True)
class Actor:
    """An authenticated caller and the roles it holds."""

    user_id: str
    email: Optional[str] = None
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    def has_role(self, role: str) -> bool:
        return role in self.roles


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue a provider-compatible token. Used by tests and local tooling."""
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1))
    claims = {
        "sub": user_id,
        "aud": settings.JWT_AUDIENCE,
        "exp": expire,
        "role": "authenticated",
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
    except JWTError as exc:
        raise Unauthenticated("Authentication error: invalid or expired token") from exc

    if not payload.get("sub"):
        raise Unauthenticated("Authentication error: token has no subject")
    return payload


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer …` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Invalid authorization header format")
    return token.strip()
