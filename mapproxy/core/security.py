"""HTTP Basic gate for the admin surface."""
from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from mapproxy.core.config import Settings
from mapproxy.core.logging import get_logger
from mapproxy.metrics.prometheus import ADMIN_AUTH_FAILURES

log = get_logger("security")

REALM = "Restricted"
_basic = HTTPBasic(realm=REALM, auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail="Unauthorized",
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )


def credentials_match(settings: Settings, username: str, password: str) -> bool:
    """Constant-time comparison; an unset admin password never matches."""
    if not settings.admin_password:
        return False
    user_ok = secrets.compare_digest(username.encode(), settings.admin_username.encode())
    pass_ok = secrets.compare_digest(password.encode(), settings.admin_password.encode())
    return user_ok and pass_ok


async def require_admin(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> str:
    settings: Settings = request.app.state.settings
    if credentials is None:
        ADMIN_AUTH_FAILURES.inc()
        raise _unauthorized()
    if not credentials_match(settings, credentials.username, credentials.password):
        ADMIN_AUTH_FAILURES.inc()
        log.warning("rejected admin credentials for user %r", credentials.username)
        raise _unauthorized()
    return credentials.username


async def check_admin(request: Request) -> str:
    """Apply the admin gate from a route that is not behind ``require_admin``."""
    return await require_admin(request, await _basic(request))
