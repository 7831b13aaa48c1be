from fastapi import Request
from fastapi.security.utils import get_authorization_scheme_param
from slowapi import Limiter
from slowapi.util import get_remote_address

from bookstore.auth import ACCESS, TokenError, verify_token
from bookstore.config import settings


def rate_limit_key(request: Request) -> str:
    """Signed-in callers share one bucket per user across addresses; everyone else is keyed by IP."""
    scheme, token = get_authorization_scheme_param(request.headers.get("Authorization"))
    if scheme.lower() == "bearer" and token:
        try:
            return f"user:{verify_token(token, ACCESS).user_id}"
        except TokenError:
            pass
    return get_remote_address(request)


def build_limiter(enabled: bool = settings.RATE_LIMIT_ENABLED) -> Limiter:
    return Limiter(
        key_func=rate_limit_key,
        default_limits=[settings.RATE_LIMIT_DEFAULT],
        enabled=enabled,
    )


limiter = build_limiter()
