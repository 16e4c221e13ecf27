"""
Canteen API — JWT Authentication Middleware

Authentication is optional: guests order without a token. When a token is
present it must be valid, and its claims are attached to request.state.user.
EventSource cannot send headers, so SSE clients may pass ?access_token=.
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from canteen.core.security import decode_token

# Paths that never look at the token
PUBLIC_PATHS = {
    "/health",
    "/metrics",
    "/",
    "/docs",
    "/openapi.json",
}


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header:
        if not auth_header.startswith("Bearer "):
            return ""
        return auth_header.split(" ", 1)[1]
    return request.query_params.get("access_token")


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """
    Intercepts every request. Validates the Bearer token when one is sent.
    request.state.user is the decoded claims, or None for guests.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.user = None

        if request.method == "OPTIONS":
            return await call_next(request)

        if request.url.path in PUBLIC_PATHS or request.url.path.startswith("/metrics"):
            return await call_next(request)

        token = _extract_token(request)
        if token is None:
            return await call_next(request)

        try:
            request.state.user = decode_token(token)
        except JWTError as exc:
            return JSONResponse(
                status_code=401,
                content={"detail": f"Invalid or expired JWT: {str(exc)}"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        return await call_next(request)
