# Strongbox - FastAPI Backend
#
# Local REST API the vault front end talks to. Binds to localhost only;
# every vault endpoint additionally requires the per-run session token.

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.datastructures import Headers

from .. import __version__
from ..core import EventSeverity, EventType, get_audit_logger, get_settings
from .security import (
    SESSION_HEADER,
    get_session_token,
    initialize_session_token,
    is_valid_session_token,
)
from .vault_routes import get_vault_manager, router as vault_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Strongbox API",
    description="Local encrypted vault for passwords and payment cards",
    version=__version__,
)

_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:8000", "http://127.0.0.1:8000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Polling endpoints are not user interaction and must not keep the vault open.
_PASSIVE_PATHS = ("/api/vault/status", "/api/vault/sync/status")


class ActivityMiddleware:
    """Restart the auto-lock countdown on every authenticated vault request.

    Requests without the current session token are rejected by the routes
    and never count as activity.

    Pure ASGI so it never buffers the response body.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            path = scope.get("path", "")
            if path.startswith("/api/vault/") and path not in _PASSIVE_PATHS:
                token = Headers(scope=scope).get(SESSION_HEADER)
                if is_valid_session_token(token):
                    get_vault_manager().touch()
        await self.app(scope, receive, send)


app.add_middleware(ActivityMiddleware)

app.include_router(vault_router)


@app.on_event("startup")
async def startup_event():
    """Generate the session token and open the vault storage."""
    initialize_session_token()
    manager = get_vault_manager()
    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="Strongbox API server started",
        details={"state": manager.state.value, "version": __version__},
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Lock the vault so no key outlives the process."""
    get_vault_manager().lock()
    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_STOP,
        severity=EventSeverity.INFO,
        message="Strongbox API server shutting down",
    )


@app.get("/api/session")
async def get_session():
    """
    Get session token for API authentication.

    Unprotected: the front end needs it to authenticate. The token is
    random, changes every restart and is only served on localhost.
    """
    return {"session_token": get_session_token()}


@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {"name": "Strongbox API", "version": __version__}


def start_api_server(host: str = None, port: int = None):
    """
    Start FastAPI server.

    Args:
        host: Host to bind to (default from settings: localhost only)
        port: Port to listen on
    """
    settings = get_settings()
    host = host or settings.host
    port = port or settings.port
    logger.info("Starting Strongbox API on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
