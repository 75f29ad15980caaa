# API Security - per-run session token
#
# The backend mints a random token at startup and hands it to the front end
# through GET /api/session. Every vault route depends on verify_session_token,
# so other local processes cannot drive the vault without it.

import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

SESSION_HEADER = "X-Session-Token"

_session_header = APIKeyHeader(name=SESSION_HEADER, auto_error=False)

# One token per backend process
_SESSION_TOKEN: Optional[str] = None


def initialize_session_token() -> str:
    """Mint a new 256-bit token, replacing any previous one."""
    global _SESSION_TOKEN
    _SESSION_TOKEN = secrets.token_urlsafe(32)
    return _SESSION_TOKEN


def get_session_token() -> str:
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not initialized")
    return _SESSION_TOKEN


def is_valid_session_token(token: Optional[str]) -> bool:
    """True when a token was minted and `token` matches it."""
    if _SESSION_TOKEN is None or token is None:
        return False
    return secrets.compare_digest(token, _SESSION_TOKEN)


async def verify_session_token(
    token: Optional[str] = Security(_session_header),
) -> str:
    """
    Route dependency: reject requests without the current session token.

    Raises:
        HTTPException: 503 before startup minted a token, 401 when the
            header is missing or wrong
    """
    if _SESSION_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session token not initialized",
        )
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {SESSION_HEADER} header",
        )
    if not is_valid_session_token(token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
        )
    return token
