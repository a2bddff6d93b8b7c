"""Request guards: bearer API key and upload size limit."""

from __future__ import annotations

import secrets
from http import HTTPStatus
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from facecensor.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _key_matches(presented: str, expected: str) -> bool:
    return secrets.compare_digest(presented.encode(), expected.encode())


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Require ``Authorization: Bearer <key>`` when FACECENSOR_API_KEY is set; otherwise allow all."""
    expected = settings_from_request(request).api_key
    if expected is None:
        return
    if credentials is not None and _key_matches(credentials.credentials, expected):
        return
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def limit_upload_size(request: Request) -> None:
    """Reject bodies whose declared length exceeds the configured file size limit."""
    declared = request.headers.get("content-length")
    if declared is None or not declared.isdigit():
        return
    limit = settings_from_request(request).max_file_size
    if int(declared) > limit:
        raise HTTPException(
            status_code=HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            detail=f"Upload exceeds {limit} bytes",
        )
