# ruff: noqa: INP001, SLF001
"""Credential resolution tests for Clerk and local auth modes."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
from fastapi import HTTPException

from worknest.core import auth
from worknest.core.config import AuthMode
from worknest.models.users import User


class _FakeSession:
    async def commit(self) -> None:  # pragma: no cover
        raise AssertionError("commit should not be called in these tests")


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, None),
        ("", None),
        ("Basic abc", None),
        ("Bearer ", None),
        ("Bearer abc", "abc"),
        ("  bearer   spaced-token ", "spaced-token"),
    ],
)
def test_extract_bearer_token(header: str | None, expected: str | None) -> None:
    assert auth.extract_bearer_token(header) == expected


@pytest.mark.asyncio
async def test_get_auth_context_raises_401_when_clerk_signed_out(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(auth.settings, "auth_mode", AuthMode.CLERK)
    monkeypatch.setattr(auth.settings, "clerk_secret_key", "sk_test_dummy")

    async def _fake_authenticate(_token: str) -> dict[str, object] | None:
        return None

    monkeypatch.setattr(auth, "_authenticate_clerk_token", _fake_authenticate)

    with pytest.raises(HTTPException) as excinfo:
        await auth.get_auth_context(  # type: ignore[arg-type]
            request=SimpleNamespace(headers={"Authorization": "Bearer session-token"}),
            session=_FakeSession(),  # type: ignore[arg-type]
        )

    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_auth_context_uses_verified_claims(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(auth.settings, "auth_mode", AuthMode.CLERK)
    monkeypatch.setattr(auth.settings, "clerk_secret_key", "sk_test_dummy")

    async def _fake_authenticate(token: str) -> dict[str, object] | None:
        assert token == "session-token"
        return {"sub": "user_123", "email": "User@Example.com"}

    async def _fake_get_or_sync_user(
        _session: Any,
        *,
        clerk_user_id: str,
        claims: dict[str, object],
    ) -> User:
        assert clerk_user_id == "user_123"
        assert auth._extract_claim_email(claims) == "user@example.com"
        return User(clerk_user_id="user_123", email="user@example.com", name="User")

    monkeypatch.setattr(auth, "_authenticate_clerk_token", _fake_authenticate)
    monkeypatch.setattr(auth, "_get_or_sync_user", _fake_get_or_sync_user)

    ctx = await auth.get_auth_context(  # type: ignore[arg-type]
        request=SimpleNamespace(headers={"Authorization": "Bearer session-token"}),
        session=_FakeSession(),  # type: ignore[arg-type]
    )

    assert ctx.actor_type == "user"
    assert ctx.user.clerk_user_id == "user_123"
    assert ctx.token == "session-token"


@pytest.mark.asyncio
async def test_claims_without_subject_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(auth.settings, "auth_mode", AuthMode.CLERK)
    monkeypatch.setattr(auth.settings, "clerk_secret_key", "sk_test_dummy")

    async def _fake_authenticate(_token: str) -> dict[str, object] | None:
        return {"email": "nobody@example.com"}

    monkeypatch.setattr(auth, "_authenticate_clerk_token", _fake_authenticate)

    assert await auth.resolve_user_for_token(_FakeSession(), "t") is None  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_local_mode_requires_matching_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(auth.settings, "auth_mode", AuthMode.LOCAL)
    monkeypatch.setattr(auth.settings, "local_auth_token", "expected-token")

    async def _fake_local_user(_session: Any) -> User:
        return User(clerk_user_id="local-auth-user", email="local@localhost", name="Local User")

    monkeypatch.setattr(auth, "get_or_create_local_user", _fake_local_user)

    user = await auth.resolve_user_for_token(_FakeSession(), "expected-token")  # type: ignore[arg-type]
    assert user is not None
    assert user.clerk_user_id == "local-auth-user"

    assert await auth.resolve_user_for_token(_FakeSession(), "wrong-token") is None  # type: ignore[arg-type]
    assert await auth.resolve_user_for_token(_FakeSession(), None) is None  # type: ignore[arg-type]


def test_claim_name_falls_back_to_given_and_family_names() -> None:
    assert auth._extract_claim_name({"name": "  Ada Lovelace "}) == "Ada Lovelace"
    assert auth._extract_claim_name({"given_name": "Ada", "family_name": "Lovelace"}) == "Ada Lovelace"
    assert auth._extract_claim_name({"first_name": "Ada"}) == "Ada"
    assert auth._extract_claim_name({}) is None


def test_clerk_profile_prefers_primary_email() -> None:
    profile = SimpleNamespace(
        primary_email_address_id="e2",
        email_addresses=[
            SimpleNamespace(id="e1", email_address="Old@Example.com"),
            SimpleNamespace(id="e2", email_address="Primary@Example.com"),
        ],
        first_name="Grace",
        last_name=None,
        username="ghopper",
    )

    assert auth._extract_clerk_profile(profile) == ("primary@example.com", "Grace")  # type: ignore[arg-type]
    assert auth._extract_clerk_profile(None) == (None, None)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", None),
        ("https://api.clerk.com", "https://api.clerk.com/v1"),
        ("https://api.clerk.com/v1/", "https://api.clerk.com/v1"),
    ],
)
def test_normalize_clerk_server_url(raw: str, expected: str | None) -> None:
    assert auth._normalize_clerk_server_url(raw) == expected
