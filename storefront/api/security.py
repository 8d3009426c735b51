"""
Admin authentication and CSRF checks, injected as FastAPI dependencies.

Routers declare them with ``dependencies=[Depends(...)]`` so tests can
replace them through ``app.dependency_overrides``.
"""

import logging
from typing import Optional

from fastapi import Cookie, Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from storefront.api.dependencies import get_settings
from storefront.config import Settings
from storefront.signatures import secrets_match

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    """Return the matching admin token, or reject the request."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = credentials.credentials
    if not any(secrets_match(known, token) for known in settings.admin_api_tokens):
        logger.warning("Rejected admin request with unknown token")
        raise HTTPException(status_code=403, detail="Admin access required")
    return token


def require_csrf(
    x_csrf_token: Optional[str] = Header(default=None),
    csrf_token: Optional[str] = Cookie(default=None),
) -> None:
    """Double-submit check: header token must equal the cookie token."""
    if not secrets_match(csrf_token, x_csrf_token):
        logger.warning("Rejected request with invalid CSRF token")
        raise HTTPException(status_code=403, detail="Invalid CSRF token")
