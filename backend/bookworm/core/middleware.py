from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response, JSONResponse
from bookworm.core.config import get_settings
from bookworm.core.rate_limit import LIMITS, get_client_ip, get_rate_limiter

settings = get_settings()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-IP request limiting for the API, with separate buckets for webhooks
    and match swipes so one class of traffic cannot exhaust another.
    Oversized bodies are rejected before reaching a handler.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > settings.max_request_body_bytes:
            return JSONResponse(status_code=413, content={"detail": "Payload too large"})

        bucket = self._bucket_for(request.url.path)
        if bucket is None:
            return await call_next(request)

        ip = get_client_ip(request)
        result = await get_rate_limiter().hit(f"{bucket}:{ip}", LIMITS[bucket])
        if not result.allowed:
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please slow down."},
                headers={"Retry-After": str(result.retry_after)},
            )
        return await call_next(request)

    def _bucket_for(self, path: str) -> str | None:
        prefix = settings.api_v1_prefix
        if not path.startswith(prefix):
            return None
        if path.startswith(f"{prefix}/webhooks/"):
            return "webhook"
        if path.startswith(f"{prefix}/matches"):
            return "match"
        return "api"
