"""
Response hardening for the HomeBase API.

The API answers with JSON or with redirects to object storage, so every
browser capability it does not use is switched off. Signature previews are
data: images and the signing dialog calls the public IP lookup, which is all
the CSP has to allow beyond 'self'.
"""

import logging
import os
from typing import Callable, Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .config import FRONTEND_URL, IP_LOOKUP_URL

logger = logging.getLogger(__name__)

IS_PRODUCTION = os.getenv("ENVIRONMENT", "development").lower() == "production"
FRONTEND_ORIGINS = [
    origin.strip() for origin in os.getenv("FRONTEND_ORIGINS", FRONTEND_URL).split(",") if origin.strip()
]

DISABLED_BROWSER_FEATURES = (
    "accelerometer",
    "camera",
    "geolocation",
    "gyroscope",
    "microphone",
    "payment",
    "usb",
    "interest-cohort",
)

NO_STORE = "no-store, no-cache, must-revalidate"


def _origin(url: str) -> str:
    scheme, _, rest = url.partition("://")
    return f"{scheme}://{rest.split('/', 1)[0].split('?', 1)[0]}"


def get_csp_policy(frame_origins: Iterable[str] = FRONTEND_ORIGINS) -> str:
    """Only the web app may frame API content"""
    return "; ".join(
        [
            "default-src 'self'",
            f"frame-ancestors 'self' {' '.join(frame_origins)}".rstrip(),
            "img-src 'self' data: blob: https:",
            f"connect-src 'self' {_origin(IP_LOOKUP_URL)}",
            "base-uri 'none'",
            "form-action 'self'",
        ]
    )


def get_permissions_policy() -> str:
    return ", ".join(f"{feature}=()" for feature in DISABLED_BROWSER_FEATURES)


def get_security_headers_dict(production: bool = IS_PRODUCTION) -> dict[str, str]:
    headers = {
        "Content-Security-Policy": get_csp_policy(),
        "Permissions-Policy": get_permissions_policy(),
        "X-Frame-Options": "SAMEORIGIN",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cross-Origin-Opener-Policy": "same-origin",
    }
    if production:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamps the hardening headers on every response outside ``exclude_paths``"""

    def __init__(self, app, exclude_paths: Optional[list[str]] = None):
        super().__init__(app)
        self.exclude_paths = tuple(exclude_paths or ())
        self.headers = get_security_headers_dict()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        if self.exclude_paths and request.url.path.startswith(self.exclude_paths):
            return response

        response.headers.update(self.headers)
        # Proposals and signatures are per-user; redirects keep their own policy
        response.headers.setdefault("Cache-Control", NO_STORE)
        return response
