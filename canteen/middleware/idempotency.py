"""
Canteen API — Idempotency Key Middleware

Order creation and the payment callback can be retried by flaky mobile
clients. With an Idempotency-Key header:
  - Cache hit  → return cached response immediately (no business logic)
  - Cache miss → execute handler, store response in Redis for 24h
Server errors (5xx) are not cached so the client can retry them.
"""
import json
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from canteen.core.config import get_settings
from canteen.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)

IDEMPOTENCY_PREFIX = "idempotent:"
IDEMPOTENCY_METHODS = {"POST"}
IDEMPOTENCY_PATHS = {"/orders", "/orders/", "/orders/verify"}


def caller_scope(request: Request) -> str:
    """Cached responses are only replayed to the caller that produced them."""
    claims = getattr(request.state, "user", None)
    if claims and claims.get("sub"):
        return f"user:{claims['sub']}"
    return "guest"


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """
    Applies to the order-creating endpoints only.
    Reads Idempotency-Key header and either:
      1. Returns cached response (replay)
      2. Executes handler and caches the response
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method not in IDEMPOTENCY_METHODS:
            return await call_next(request)

        if request.url.path not in IDEMPOTENCY_PATHS:
            return await call_next(request)

        idem_key = request.headers.get("Idempotency-Key")
        if not idem_key:
            return await call_next(request)

        redis = get_redis()
        cache_key = f"{IDEMPOTENCY_PREFIX}{caller_scope(request)}:{request.url.path}:{idem_key}"

        # Cache HIT → replay stored response
        try:
            cached = await redis.get(cache_key)
        except Exception as exc:
            logger.warning("Idempotency cache unavailable, handling %s uncached: %s", idem_key, exc)
            return await call_next(request)
        if cached:
            data = json.loads(cached)
            return JSONResponse(
                content=data["body"],
                status_code=data["status_code"],
                headers={"X-Idempotency-Replay": "true"},
            )

        # Cache MISS → proceed to handler
        response = await call_next(request)

        # Capture and cache response body
        body_bytes = b""
        async for chunk in response.body_iterator:
            body_bytes += chunk

        try:
            body = json.loads(body_bytes)
        except ValueError:
            body = body_bytes.decode("utf-8", errors="replace")

        if response.status_code < 500:
            try:
                await redis.setex(
                    cache_key,
                    settings.IDEMPOTENCY_KEY_TTL_SECONDS,
                    json.dumps({"body": body, "status_code": response.status_code}),
                )
            except Exception as exc:
                logger.warning("Could not cache idempotent response for %s: %s", idem_key, exc)

        return Response(
            content=body_bytes,
            status_code=response.status_code,
            media_type=response.media_type,
            headers=dict(response.headers),
        )
