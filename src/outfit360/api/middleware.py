"""Request guards: bearer API key and upload size limit."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from outfit360.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def _settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Require 'Authorization: Bearer <key>' when OUTFIT360_API_KEY is set.

    With no key configured the API is open.
    """
    expected = _settings(request).api_key
    if expected is None:
        return

    supplied = b"" if credentials is None else credentials.credentials.encode()
    if not secrets.compare_digest(supplied, expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def limit_upload_size(request: Request) -> None:
    """Reject requests whose declared body exceeds OUTFIT360_MAX_UPLOAD_SIZE."""
    declared = request.headers.get("content-length")
    if declared is None or not declared.isdigit():
        return
    limit = _settings(request).max_upload_size
    if int(declared) > limit:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Upload exceeds {limit} bytes",
        )
