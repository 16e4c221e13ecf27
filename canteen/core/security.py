"""
Canteen API — Security helpers (JWT decode only, shared secret)

Tokens are issued by the campus identity service. This service only needs
the caller identity: `sub` (user id) and `is_admin`.
"""
from typing import Any

from fastapi import HTTPException, Request, status
from jose import jwt

from canteen.core.config import get_settings

settings = get_settings()


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def current_claims(request: Request) -> dict[str, Any] | None:
    return getattr(request.state, "user", None)


def require_admin(request: Request) -> dict[str, Any]:
    """FastAPI dependency guarding kitchen/admin routes."""
    claims = current_claims(request)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not claims.get("is_admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins only.")
    return claims
