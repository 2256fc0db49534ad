"""slowapi limiter for the queue trigger.

Callers are HR services and schedulers rather than browsers, so limits are
counted per calling service (``X-Actor``) and fall back to the client IP.
"""

from fastapi import Request
from slowapi import Limiter

from .audit.service import ACTOR_HEADER, _get_ip


def _caller_key(request: Request) -> str:
    actor = (request.headers.get(ACTOR_HEADER) or "").strip()
    if actor:
        return f"actor:{actor[:100]}"
    return f"ip:{_get_ip(request) or 'unknown'}"


limiter = Limiter(key_func=_caller_key)
