"""
Boundary credential check.

Every route is gated by a single configured HTTP Basic username/password
pair. Comparison is constant-time.
"""

import logging
import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from gateway.app.core.config import Settings

logger = logging.getLogger(__name__)

basic_auth = HTTPBasic(realm="render-gateway")


def require_credentials(
    request: Request,
    credentials: Annotated[HTTPBasicCredentials, Depends(basic_auth)],
) -> str:
    settings: Settings = request.app.state.settings

    username_ok = secrets.compare_digest(
        credentials.username.encode("utf-8"),
        settings.username.encode("utf-8"),
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"),
        settings.password.get_secret_value().encode("utf-8"),
    )

    if not (username_ok and password_ok):
        logger.warning("rejected_credentials", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username
