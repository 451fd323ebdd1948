"""Bearer token handling.

Tokens are minted by the club's identity service with the shared secret.
The engine only needs to know who is calling: a member (``sub`` is the
membership number) or a staff user (``sub`` is the staff id).
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from clubhouse.core.config import settings

ROLE_MEMBER = "member"
ROLE_STAFF = "staff"


def create_access_token(subject: str, role: str = ROLE_MEMBER, name: str | None = None) -> str:
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": subject, "exp": expire, "type": "access", "role": role}
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Raises JWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    if payload.get("role") not in (ROLE_MEMBER, ROLE_STAFF):
        raise JWTError("Invalid token role")
    return payload
