"""Request guards: API key authentication and upload size limits."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from fruitcounter.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def _settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against FRUITCOUNTER_API_KEY.

    Without a configured key every request passes.
    """
    api_key = _settings(request).api_key
    if api_key is None:
        return

    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def limit_upload_size(request: Request) -> None:
    """Reject uploads whose declared Content-Length exceeds the configured limit."""
    declared = request.headers.get("content-length")
    if declared is None or not declared.isdigit():
        return

    limit = _settings(request).max_file_size
    if int(declared) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"Upload exceeds {limit} bytes",
        )
