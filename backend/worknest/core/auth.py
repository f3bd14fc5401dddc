"""User authentication helpers for Clerk and local-token auth modes.

HTTP routes resolve the caller through `get_auth_context`; the realtime
WebSocket, which cannot use FastAPI's bearer dependency, resolves the same
credential through `resolve_user_for_token`.
"""

from __future__ import annotations

from dataclasses import dataclass
from hmac import compare_digest
from typing import TYPE_CHECKING, Literal

import httpx
from clerk_backend_api import Clerk
from clerk_backend_api.models.clerkerrors import ClerkErrors
from clerk_backend_api.models.sdkerror import SDKError
from clerk_backend_api.security.types import AuthenticateRequestOptions, AuthStatus
from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from worknest.core.config import AuthMode, settings
from worknest.core.logging import get_logger
from worknest.db import crud
from worknest.db.session import get_session
from worknest.models.users import User

if TYPE_CHECKING:
    from clerk_backend_api.models.user import User as ClerkUser
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)
SESSION_DEP = Depends(get_session)
LOCAL_AUTH_USER_ID = "local-auth-user"
LOCAL_AUTH_EMAIL = "admin@home.local"
LOCAL_AUTH_NAME = "Local User"


class ClerkTokenPayload(BaseModel):
    """JWT claims payload shape required from Clerk tokens."""

    sub: str


@dataclass
class AuthContext:
    """Authenticated user context resolved from an inbound credential."""

    actor_type: Literal["user"]
    user: User
    token: str


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an `Authorization: Bearer ...` header value."""
    if not authorization:
        return None
    value = authorization.strip()
    if not value.lower().startswith("bearer "):
        return None
    token = value.split(" ", maxsplit=1)[1].strip()
    return token or None


def _non_empty_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _extract_claim_email(claims: dict[str, object]) -> str | None:
    for key in ("email", "email_address", "primary_email_address"):
        email = _non_empty_str(claims.get(key))
        if email:
            return email.lower()
    return None


def _extract_claim_name(claims: dict[str, object]) -> str | None:
    for key in ("name", "full_name"):
        text = _non_empty_str(claims.get(key))
        if text:
            return text
    first = _non_empty_str(claims.get("given_name")) or _non_empty_str(claims.get("first_name"))
    last = _non_empty_str(claims.get("family_name")) or _non_empty_str(claims.get("last_name"))
    parts = [part for part in (first, last) if part]
    return " ".join(parts) or None


def _extract_clerk_profile(profile: ClerkUser | None) -> tuple[str | None, str | None]:
    if profile is None:
        return None, None
    primary_email_id = _non_empty_str(getattr(profile, "primary_email_address_id", None))
    email: str | None = None
    for item in getattr(profile, "email_addresses", None) or []:
        candidate = _non_empty_str(getattr(item, "email_address", None))
        if not candidate:
            continue
        if email is None or _non_empty_str(getattr(item, "id", None)) == primary_email_id:
            email = candidate.lower()
    first = _non_empty_str(getattr(profile, "first_name", None))
    last = _non_empty_str(getattr(profile, "last_name", None))
    name = " ".join(part for part in (first, last) if part) or _non_empty_str(
        getattr(profile, "username", None),
    )
    return email, name


def _normalize_clerk_server_url(raw: str) -> str | None:
    server_url = raw.strip().rstrip("/")
    if not server_url:
        return None
    if not server_url.endswith("/v1"):
        server_url = f"{server_url}/v1"
    return server_url


async def _authenticate_clerk_token(token: str) -> dict[str, object] | None:
    """Verify a Clerk session token and return its claims, or `None` when rejected."""
    options = AuthenticateRequestOptions(
        secret_key=settings.clerk_secret_key.strip(),
        clock_skew_in_ms=int(settings.clerk_leeway * 1000),
        accepts_token=["session_token"],
    )
    # The SDK authenticates an httpx.Request, so wrap the bare token in one.
    httpx_request = httpx.Request(
        "GET",
        settings.base_url or "http://localhost",
        headers={"Authorization": f"Bearer {token}"},
    )
    sdk = Clerk(bearer_auth=options.secret_key or "")
    request_state = await run_in_threadpool(sdk.authenticate_request, httpx_request, options)
    if request_state.status != AuthStatus.SIGNED_IN or not isinstance(request_state.payload, dict):
        return None
    return {str(key): value for key, value in request_state.payload.items()}


async def _fetch_clerk_profile(clerk_user_id: str) -> tuple[str | None, str | None]:
    clerk_user_id_log = clerk_user_id[-6:]
    try:
        async with Clerk(
            bearer_auth=settings.clerk_secret_key.strip(),
            server_url=_normalize_clerk_server_url(settings.clerk_api_url or ""),
            timeout_ms=5000,
        ) as clerk:
            profile = await clerk.users.get_async(user_id=clerk_user_id)
        return _extract_clerk_profile(profile)
    except (ClerkErrors, SDKError, httpx.HTTPError) as exc:
        logger.warning(
            "auth.clerk.profile.fetch_failed clerk_user_id=%s error_type=%s",
            clerk_user_id_log,
            exc.__class__.__name__,
        )
    return None, None


async def _get_or_sync_user(
    session: AsyncSession,
    *,
    clerk_user_id: str,
    claims: dict[str, object],
) -> User:
    claim_email = _extract_claim_email(claims)
    claim_name = _extract_claim_name(claims)
    user, created = await crud.get_or_create(
        session,
        User,
        clerk_user_id=clerk_user_id,
        defaults={"email": claim_email, "name": claim_name},
    )
    # Only go back to Clerk while the stored profile is incomplete.
    if not (created or not user.email or not user.name):
        return user
    profile_email, profile_name = await _fetch_clerk_profile(clerk_user_id)
    email = profile_email or claim_email
    name = profile_name or claim_name
    changed = False
    if email and user.email != email:
        user.email = email
        changed = True
    if name and not user.name:
        user.name = name
        changed = True
    if changed:
        session.add(user)
        await session.commit()
        await session.refresh(user)
        logger.info("auth.user.sync clerk_user_id=%s", clerk_user_id[-6:])
    return user


async def get_or_create_local_user(session: AsyncSession) -> User:
    """Return the single user that local shared-token auth maps to."""
    user, _created = await crud.get_or_create(
        session,
        User,
        clerk_user_id=LOCAL_AUTH_USER_ID,
        defaults={"email": LOCAL_AUTH_EMAIL, "name": LOCAL_AUTH_NAME},
    )
    return user


async def resolve_user_for_token(session: AsyncSession, token: str | None) -> User | None:
    """Resolve a raw bearer credential to a user under the configured auth mode."""
    if not token:
        return None
    if settings.auth_mode == AuthMode.LOCAL:
        expected = settings.local_auth_token.strip()
        if not expected or not compare_digest(token, expected):
            return None
        return await get_or_create_local_user(session)

    claims = await _authenticate_clerk_token(token)
    if claims is None:
        return None
    try:
        clerk_user_id = ClerkTokenPayload.model_validate(claims).sub
    except ValidationError:
        return None
    if not clerk_user_id:
        return None
    return await _get_or_sync_user(session, clerk_user_id=clerk_user_id, claims=claims)


async def get_auth_context(
    request: Request,
    session: AsyncSession = SESSION_DEP,
) -> AuthContext:
    """Resolve required authenticated user context for the configured auth mode."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    user = await resolve_user_for_token(session, token)
    if user is None or token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return AuthContext(actor_type="user", user=user, token=token)
