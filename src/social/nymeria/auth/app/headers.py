from typing import Dict, Final
from aiohttp import web

SECURITY_HEADERS: Final[Dict[str, str]] = {
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none';",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}


def apply_security_headers(response: web.StreamResponse) -> web.StreamResponse:
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


@web.middleware
async def security_headers_middleware(request: web.Request, handler):
    """Attach the security headers to every response, error responses included."""
    try:
        response = await handler(request)
    except web.HTTPException as e:
        apply_security_headers(e)
        raise e
    return apply_security_headers(response)
