"""Unit tests for auth/sessions.py -- access/refresh issuance, renewal and revocation."""

from __future__ import annotations

import asyncio

import pytest

from auth.models import User
from auth.sessions import SessionTokenService
from auth.tokens import TokenCodec, strip_bearer
from core.errors import InvalidAccessError, InvalidTokenError, TokenSignatureExpiredError


@pytest.fixture
def user(user_store) -> User:
    user_id = user_store.create_user(User(username="alice", email="alice@example.com"))
    return user_store.get_by_id(user_id)


@pytest.fixture
def sessions(user_store, codec) -> SessionTokenService:
    return SessionTokenService(user_store, codec)


def test_issue_returns_bearer_pair_and_attaches_access(sessions, user_store, user):
    tokens = asyncio.run(sessions.issue_and_attach(user))
    assert tokens.access_token.startswith("Bearer ")
    assert tokens.refresh_token.startswith("Bearer ")
    assert user_store.list_session_tokens(user.id) == [tokens.access_token]


def test_collection_is_append_only(sessions, user_store, user):
    first = asyncio.run(sessions.issue_and_attach(user))
    _, second = asyncio.run(sessions.renew(first.refresh_token))
    assert user_store.list_session_tokens(user.id) == [first.access_token, second.access_token]
    # Renewal does not detach the older access token.
    assert asyncio.run(sessions.authenticate(first.access_token)).id == user.id


def test_authenticate_accepts_raw_or_bearer(sessions, user):
    tokens = asyncio.run(sessions.issue_and_attach(user))
    assert asyncio.run(sessions.authenticate(tokens.access_token)).id == user.id
    assert asyncio.run(sessions.authenticate(strip_bearer(tokens.access_token))).id == user.id


def test_authenticate_rejects_refresh_token(sessions, user):
    tokens = asyncio.run(sessions.issue_and_attach(user))
    with pytest.raises(InvalidTokenError):
        asyncio.run(sessions.authenticate(tokens.refresh_token))


def test_authenticate_rejects_unattached_token(sessions, codec, user):
    stray = codec.sign_access(user.id)
    with pytest.raises(InvalidAccessError):
        asyncio.run(sessions.authenticate(stray))


def test_revoke_detaches_only_that_token(sessions, user_store, user):
    a = asyncio.run(sessions.issue_and_attach(user))
    b = asyncio.run(sessions.issue_and_attach(user))
    asyncio.run(sessions.revoke(user.id, a.access_token))
    assert user_store.list_session_tokens(user.id) == [b.access_token]
    assert asyncio.run(sessions.is_attached(user.id, b.access_token)) is True
    with pytest.raises(InvalidAccessError):
        asyncio.run(sessions.authenticate(a.access_token))


def test_renew_rejects_access_token(sessions, user):
    tokens = asyncio.run(sessions.issue_and_attach(user))
    with pytest.raises(InvalidTokenError):
        asyncio.run(sessions.renew(tokens.access_token))


def test_renew_rejects_deleted_user(sessions, user_store, user):
    tokens = asyncio.run(sessions.issue_and_attach(user))
    user_store.update_user(user.id, is_deleted=True)
    with pytest.raises(InvalidAccessError):
        asyncio.run(sessions.renew(tokens.refresh_token))
    with pytest.raises(InvalidAccessError):
        asyncio.run(sessions.authenticate(tokens.access_token))


def test_renew_rejects_unknown_user(sessions, codec):
    with pytest.raises(InvalidAccessError):
        asyncio.run(sessions.renew(codec.sign_refresh("missing")))


def test_expired_access_token(user_store, user):
    short = SessionTokenService(user_store, TokenCodec("s" * 32, access_expire_seconds=-10))
    tokens = asyncio.run(short.issue_and_attach(user))
    with pytest.raises(TokenSignatureExpiredError):
        asyncio.run(short.authenticate(tokens.access_token))
