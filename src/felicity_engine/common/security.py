"""Caller identity and organizer API key dependencies.

Authentication itself lives outside the engine: the fronting service resolves
the session and forwards the caller as an opaque ``X-Actor-Id``.
"""

import hmac

from fastapi import Header

from felicity_engine.common.exceptions import ForbiddenError


async def require_api_key(
    x_felicity_api_key: str | None = Header(None, alias="X-Felicity-Api-Key"),
) -> str:
    """FastAPI dependency that validates the organizer API key from header."""
    from felicity_engine.common.config import get_settings

    settings = get_settings()
    if not x_felicity_api_key:
        raise ForbiddenError("Organizer API key required")
    if not hmac.compare_digest(x_felicity_api_key.encode(), settings.api_key.encode()):
        raise ForbiddenError("Invalid API key")
    return x_felicity_api_key


async def caller_identity(
    x_actor_id: str = Header(..., alias="X-Actor-Id", min_length=1, max_length=64),
) -> str:
    """Opaque id of the participant or organizer making the request."""
    return x_actor_id


async def is_organizer(
    x_felicity_api_key: str = Header(None, alias="X-Felicity-Api-Key"),
) -> bool:
    """True when a valid organizer API key accompanies the request.

    For endpoints shared by participants (acting on their own data) and
    organizers (acting on anyone's).
    """
    if not x_felicity_api_key:
        return False
    await require_api_key(x_felicity_api_key)
    return True
