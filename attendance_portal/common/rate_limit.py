"""Rate limiting via slowapi.

Authenticated calls are keyed by the token subject so that staff sharing
an office NAT do not throttle each other; anonymous calls fall back to the
client IP.
"""

from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def user_or_ip(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            # Signature is verified by get_current_user; this is only a bucket key.
            sub = jwt.get_unverified_claims(token).get("sub")
        except JWTError:
            sub = None
        if sub:
            return f"user:{sub}"
    return get_remote_address(request)


limiter = Limiter(key_func=user_or_ip, default_limits=["60/minute"])
