"""Unit tests for auth/action_tokens.py -- single-use, time-boxed action tokens.

Covers:
- create then verify returns the issued user_id and action
- reissuing for the same user supersedes the previous token (any action)
- verifying against a different action fails with InvalidTokenTypeError
- a consumed token fails with TokenExpiredError
- a token past expiry_time fails with TokenExpiredError
- a token that ages out in real time fails with TokenExpiredError
- verification is read-only and repeatable
- tampered and unknown tokens
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest

from auth.action_tokens import ActionTokenService
from auth.models import TokenAction
from auth.tokens import TokenCodec
from core.errors import (
    InvalidAccessError,
    InvalidTokenError,
    InvalidTokenTypeError,
    TokenExpiredError,
)


@pytest.fixture
def service(action_store, codec) -> ActionTokenService:
    return ActionTokenService(action_store, codec, window_seconds=300)


def test_create_then_verify_returns_payload(service):
    token = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    payload = asyncio.run(service.verify_action_token(token, TokenAction.RESET_PASSWORD))
    assert payload["user_id"] == "u1"
    assert payload["action"] == "resetPassword"
    assert payload["type"] == "action"


def test_create_persists_record_with_window(service, action_store):
    before = datetime.now(timezone.utc)
    token = asyncio.run(service.create_action_token("u1", TokenAction.VERIFY_EMAIL))
    record = action_store.get_by_token(token)
    assert record is not None
    assert record.user_id == "u1"
    assert record.action == TokenAction.VERIFY_EMAIL
    assert record.is_used is False
    assert before + timedelta(seconds=299) <= record.expiry_time <= before + timedelta(seconds=301)


def test_reissue_supersedes_previous_token(service):
    first = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    second = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    assert first != second
    with pytest.raises(InvalidAccessError):
        asyncio.run(service.verify_action_token(first, TokenAction.RESET_PASSWORD))
    payload = asyncio.run(service.verify_action_token(second, TokenAction.RESET_PASSWORD))
    assert payload["user_id"] == "u1"


def test_reissue_for_other_action_supersedes_too(service):
    """One live token per user: a reset request kills a pending verify-email link."""
    verify_link = asyncio.run(service.create_action_token("u1", TokenAction.VERIFY_EMAIL))
    asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    with pytest.raises(InvalidAccessError):
        asyncio.run(service.verify_action_token(verify_link, TokenAction.VERIFY_EMAIL))


def test_reissue_keeps_one_row_per_user(service, action_store):
    asyncio.run(service.create_action_token("u1", TokenAction.VERIFY_EMAIL))
    first = action_store.get_by_user("u1")
    token = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    second = action_store.get_by_user("u1")
    assert second.id == first.id
    assert second.token == token
    assert second.action == TokenAction.RESET_PASSWORD


def test_tokens_for_different_users_are_independent(service):
    a = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    b = asyncio.run(service.create_action_token("u2", TokenAction.RESET_PASSWORD))
    assert asyncio.run(service.verify_action_token(a, TokenAction.RESET_PASSWORD))["user_id"] == "u1"
    assert asyncio.run(service.verify_action_token(b, TokenAction.RESET_PASSWORD))["user_id"] == "u2"


def test_wrong_action_fails_with_invalid_token_type(service):
    token = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    with pytest.raises(InvalidTokenTypeError):
        asyncio.run(service.verify_action_token(token, TokenAction.VERIFY_EMAIL))


def test_consumed_token_fails_with_token_expired(service, action_store):
    token = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    asyncio.run(service.mark_token_as_used(token))
    assert action_store.get_by_token(token).is_used is True
    with pytest.raises(TokenExpiredError):
        asyncio.run(service.verify_action_token(token, TokenAction.RESET_PASSWORD))


def test_mark_used_twice_is_harmless(service):
    token = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    asyncio.run(service.mark_token_as_used(token))
    asyncio.run(service.mark_token_as_used(token))
    with pytest.raises(TokenExpiredError):
        asyncio.run(service.verify_action_token(token, TokenAction.RESET_PASSWORD))


def test_mark_unknown_token_fails_with_invalid_access(service, codec):
    stray = codec.sign_action("u9", TokenAction.RESET_PASSWORD)
    with pytest.raises(InvalidAccessError):
        asyncio.run(service.mark_token_as_used(stray))


def test_expired_record_fails_with_token_expired(service, action_store):
    token = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    record = action_store.get_by_token(token)
    action_store.update_by_id(record.id, expiry_time=datetime.now(timezone.utc) - timedelta(seconds=1))
    assert action_store.get_by_token(token).is_used is False
    with pytest.raises(TokenExpiredError):
        asyncio.run(service.verify_action_token(token, TokenAction.RESET_PASSWORD))


def test_token_aging_out_fails_with_token_expired(action_store):
    short_codec = TokenCodec("s" * 32, action_expire_seconds=1)
    short = ActionTokenService(action_store, short_codec, window_seconds=1)
    token = asyncio.run(short.create_action_token("u1", TokenAction.RESET_PASSWORD))
    time.sleep(2.2)
    with pytest.raises(TokenExpiredError):
        asyncio.run(short.verify_action_token(token, TokenAction.RESET_PASSWORD))


def test_verify_is_idempotent(service, action_store):
    token = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    first = asyncio.run(service.verify_action_token(token, TokenAction.RESET_PASSWORD))
    second = asyncio.run(service.verify_action_token(token, TokenAction.RESET_PASSWORD))
    assert first == second
    assert action_store.get_by_token(token).is_used is False


def test_never_issued_token_fails_with_invalid_access(service, codec):
    stray = codec.sign_action("u1", TokenAction.RESET_PASSWORD)
    with pytest.raises(InvalidAccessError):
        asyncio.run(service.verify_action_token(stray, TokenAction.RESET_PASSWORD))


def test_tampered_token_fails_with_invalid_token(service):
    token = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))
    head, body, sig = token.split(".")
    tampered = f"{head}.{body}.{sig[::-1]}"
    with pytest.raises(InvalidTokenError):
        asyncio.run(service.verify_action_token(tampered, TokenAction.RESET_PASSWORD))


def test_access_token_is_not_an_action_token(service, codec):
    with pytest.raises(InvalidTokenError):
        asyncio.run(service.verify_action_token(codec.sign_access("u1"), TokenAction.RESET_PASSWORD))


class TestResetPasswordWalkthrough:
    """u1 / resetPassword with a five-minute window, end to end."""

    def test_walkthrough(self, service) -> None:
        token = asyncio.run(service.create_action_token("u1", TokenAction.RESET_PASSWORD))

        payload = asyncio.run(service.verify_action_token(token, TokenAction.RESET_PASSWORD))
        assert payload["user_id"] == "u1"

        with pytest.raises(InvalidTokenTypeError):
            asyncio.run(service.verify_action_token(token, TokenAction.VERIFY_EMAIL))

        asyncio.run(service.mark_token_as_used(token))
        with pytest.raises(TokenExpiredError):
            asyncio.run(service.verify_action_token(token, TokenAction.RESET_PASSWORD))
