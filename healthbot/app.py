"""FastAPI application for the Healthbot API backend."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth.gate import NEW_ACCESS_TOKEN_HEADER, NEW_REFRESH_TOKEN_HEADER, AuthorizationGateMiddleware, GatedRoute
from .auth.routes import router as auth_router
from .auth.tracking import SessionTrackingMiddleware
from .config import API_ALLOWED_ORIGINS, API_HOST, API_PORT
from .db import init_database
from .logging_config import configure_logging
from .responses import failure, internal_error
from .routes import router

configure_logging()
LOGGER = logging.getLogger(__name__)
LOGGER.info("Creating Healthbot FastAPI application")

app = FastAPI(
    title="Healthbot API",
    version="1.0.0",
    description="Authentication and session services for the healthcare chatbot.",
)
# Routes declared on the app itself must be visible to the gate as well.
app.router.route_class = GatedRoute

# Middleware added last runs first: CORS, then session tracking, then the gate.
# Tracking sits outside the gate so rejected requests are still recorded.
app.add_middleware(AuthorizationGateMiddleware)
app.add_middleware(SessionTrackingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=API_ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[NEW_ACCESS_TOKEN_HEADER, NEW_REFRESH_TOKEN_HEADER],
)

app.include_router(auth_router)
app.include_router(router)


_HTTP_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: "AUTHENTICATION_REQUIRED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


@app.exception_handler(StarletteHTTPException)
async def http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Answer ``HTTPException`` raised by routes and dependencies with the standard envelope."""
    response = failure(exc.status_code, str(exc.detail), _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"))
    for name, value in (exc.headers or {}).items():
        response.headers[name] = value
    return response


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return internal_error()


@app.on_event("startup")
def ensure_schema() -> None:
    """Create any missing tables before the first request is served."""
    LOGGER.info("Backend startup hook triggered, ensuring database schema")
    try:
        init_database()
    except Exception:  # pylint: disable=broad-except
        LOGGER.exception("Database initialisation failed during startup")
        raise


if __name__ == "__main__":
    import uvicorn

    LOGGER.info("Launching Uvicorn development server on %s:%s", API_HOST, API_PORT)
    uvicorn.run("healthbot.app:app", host=API_HOST, port=API_PORT, reload=True)
