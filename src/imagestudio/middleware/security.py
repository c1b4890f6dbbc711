from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# The service only returns JSON, so nothing it serves should execute or be framed.
_API_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

_DOCS_PATHS = {"/docs", "/redoc"}

_HSTS_VALUE = "max-age=31536000; includeSubDomains"


def _apply_security_headers(response: Response, path: str, is_https: bool) -> None:
    for name, value in _API_HEADERS.items():
        # Swagger UI loads its own scripts and styles.
        if name == "Content-Security-Policy" and path in _DOCS_PATHS:
            continue
        response.headers[name] = value
    if is_https:
        response.headers["Strict-Transport-Security"] = _HSTS_VALUE


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds API security headers to every HTTP response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        _apply_security_headers(
            response, request.url.path, is_https=request.url.scheme == "https",
        )
        return response
