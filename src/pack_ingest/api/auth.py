"""Operator authentication for ingestion endpoints."""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..common import get_logger

logger = get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)


def require_operator(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> str:
    """Accept the request only with a configured operator bearer token."""
    tokens = request.app.state.config.api.admin_tokens
    if credentials is not None:
        for token in tokens:
            if secrets.compare_digest(credentials.credentials.encode(), token.encode()):
                return token

    logger.warning(
        "Rejected unauthenticated request",
        extra={"extra_fields": {"path": request.url.path}},
    )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
