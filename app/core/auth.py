"""API key authentication.

Callers identify themselves with an ``X-API-Key`` header. Keys are mapped to
user ids through ``APP_API_KEYS`` (``user_id:key`` pairs). A resolved user id
is stored on ``request.state.user_id`` so the rate limit guard can key usage
by user instead of client address.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from app.core.config import settings
from app.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def _hash_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def parse_api_keys(keys_string: str | None) -> dict[str, str]:
    """Parse comma-separated ``user_id:key`` pairs into a key -> user_id map.

    Entries without a user id use the key hash as the user id.

    Examples:
        >>> parse_api_keys("alice:k1, bob:k2")
        {'k1': 'alice', 'k2': 'bob'}
        >>> parse_api_keys(None)
        {}
    """
    if not keys_string:
        return {}

    mapping: dict[str, str] = {}
    for entry in keys_string.split(","):
        entry = entry.strip()
        if not entry:
            continue
        user_id, sep, key = entry.partition(":")
        if not sep:
            key, user_id = user_id, f"key:{_hash_key(user_id)}"
        user_id, key = user_id.strip(), key.strip()
        if key:
            mapping[key] = user_id
    return mapping


def resolve_user_id(provided_key: str) -> str:
    """Map an API key to its user id.

    Raises:
        AuthenticationAppError: If the key is not configured.
    """
    user_id = parse_api_keys(settings.app.api_keys).get(provided_key)
    if user_id is None:
        logger.warning(
            "auth.invalid_key",
            extra={"api_key_hash": _hash_key(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )
    return user_id


async def authenticate_caller(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> str | None:
    """FastAPI dependency establishing the caller's user id, if any.

    Anonymous callers are allowed unless ``APP_API_KEY_REQUIRED`` is set;
    they are rate limited by client address instead.

    Raises:
        HTTPException: 403 when the key is invalid, or missing while required.
    """
    if not x_api_key:
        if settings.app.api_key_required:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Missing API key. Provide X-API-Key header.",
            )
        return None

    try:
        user_id = resolve_user_id(x_api_key)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    request.state.user_id = user_id
    return user_id


async def verify_admin_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency restricting a route to admin API keys."""
    admin_keys = {k.strip() for k in (settings.app.admin_api_keys or "").split(",") if k.strip()}
    if not x_api_key or x_api_key not in admin_keys:
        logger.warning(
            "auth.admin_denied",
            extra={"api_key_present": bool(x_api_key)},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API key required.",
        )
