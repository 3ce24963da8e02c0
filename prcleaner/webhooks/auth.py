"""HTTP basic authentication for the webhook server."""

from __future__ import annotations

import hmac
from typing import Awaitable, Callable, Collection

from aiohttp import BasicAuth, hdrs, web

from prcleaner.utils.logging import get_logger

log = get_logger(__name__)

_RequestHandler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def validate_basic_credentials(header: str, username: str, password: str) -> bool:
    """Check an Authorization header against the configured credentials.

    Returns False if no credentials are configured (rejects every request).
    """
    if not username or not password:
        return False
    if not header:
        return False
    try:
        auth = BasicAuth.decode(header)
    except ValueError:
        return False
    # Evaluate both comparisons so timing doesn't reveal which one failed
    user_ok = hmac.compare_digest(auth.login.encode(), username.encode())
    password_ok = hmac.compare_digest(auth.password.encode(), password.encode())
    return user_ok and password_ok


def basic_auth_middleware(
    username: str,
    password: str,
    realm: str,
    anonymous_paths: Collection[str] = (),
) -> Callable[[web.Request, _RequestHandler], Awaitable[web.StreamResponse]]:
    @web.middleware
    async def middleware(request: web.Request, handler: _RequestHandler) -> web.StreamResponse:
        if request.path in anonymous_paths:
            return await handler(request)
        header = request.headers.get(hdrs.AUTHORIZATION, "")
        if not validate_basic_credentials(header, username, password):
            log.warning("authentication_failed", path=request.path, remote=request.remote)
            return web.Response(
                status=401,
                text="Unauthorized",
                headers={hdrs.WWW_AUTHENTICATE: f'Basic realm="{realm}"'},
            )
        return await handler(request)

    return middleware
