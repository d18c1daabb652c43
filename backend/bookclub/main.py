from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from starlette.requests import Request
from starlette.responses import Response

from bookclub.api.router import router as api_router
from bookclub.core.logging import configure_logging
from bookclub.core.settings import Settings, get_settings, parse_allowed_hosts, parse_allowed_origins

logger = logging.getLogger(__name__)

# Every response may carry a session cookie or identity data; none may be cached.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "X-Frame-Options": "DENY",
    "Cache-Control": "no-store",
}


async def add_security_headers(request: Request, call_next) -> Response:
    resp: Response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        resp.headers.setdefault(name, value)
    return resp


def _docs_path(settings: Settings, path: str) -> str | None:
    return path if settings.app_env == "dev" else None


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Book Club API",
        version="0.1.0",
        docs_url=_docs_path(settings, "/api/docs"),
        redoc_url=_docs_path(settings, "/api/redoc"),
        openapi_url=_docs_path(settings, "/api/openapi.json"),
    )

    # Auth routes only serve GET and POST; browsers send OPTIONS for preflight.
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=parse_allowed_hosts(settings))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-CSRF-Token"],
    )
    app.middleware("http")(add_security_headers)

    app.include_router(api_router, prefix="/api")
    logger.info("Book Club API configured for env=%s", settings.app_env)
    return app


app = create_app()
