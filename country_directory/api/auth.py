"""
Administrator check for write endpoints.
"""

import hmac
from typing import Optional

from fastapi import Header, Request

from country_directory.errors import AuthorizationError


def is_admin_token(presented: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time token comparison. With no token configured nobody is admin."""
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


async def require_admin(
    request: Request,
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
) -> None:
    """Dependency for admin-only routes."""
    settings = request.app.state.settings
    if not is_admin_token(x_admin_token, settings.admin_api_token):
        raise AuthorizationError("Unauthorized")
