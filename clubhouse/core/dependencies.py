"""FastAPI dependencies for injection into route handlers."""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from clubhouse.core.auth import ROLE_STAFF, decode_token

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as asserted by the identity service."""

    subject: str
    role: str
    name: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role == ROLE_STAFF

    @property
    def display_name(self) -> str:
        return self.name or self.subject


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    """Extract and validate the caller from the JWT bearer token."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        payload = decode_token(credentials.credentials)
        subject = str(payload["sub"])
    except (JWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from None

    return Principal(subject=subject, role=payload["role"], name=payload.get("name"))


async def require_staff(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Require the caller to be club staff."""
    if not principal.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff access required")
    return principal
