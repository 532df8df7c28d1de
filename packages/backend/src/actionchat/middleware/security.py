"""Security headers middleware.

Learn: Every response is JSON, often carrying org secrets in masked form,
so nothing is cacheable, frameable or sniffable. HSTS is only sent when the
request actually arrived over HTTPS; browsers ignore it on plain HTTP and
local development would otherwise pin localhost to TLS.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

API_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

HSTS = "max-age=31536000; includeSubDomains"


def _is_https(request: Request) -> bool:
    # Behind a TLS-terminating proxy the app itself sees plain HTTP.
    forwarded = request.headers.get("x-forwarded-proto", "")
    return request.url.scheme == "https" or forwarded.split(",")[0].strip() == "https"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add API security headers to all responses, errors included."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        for name, value in API_HEADERS.items():
            response.headers.setdefault(name, value)
        if _is_https(request):
            response.headers["Strict-Transport-Security"] = HSTS
        return response
