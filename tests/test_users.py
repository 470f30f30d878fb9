"""Unit tests for auth/users.py -- account creation, lookup, update, soft delete, login."""

from __future__ import annotations

import asyncio
import threading

import pytest

from auth.tokens import verify_password
from auth.users import UserService
from core.errors import AppError, ErrorType


@pytest.fixture
def users(user_store) -> UserService:
    return UserService(user_store)


def _create(users: UserService, username="alice", email="alice@example.com", password="password123", **kw):
    return asyncio.run(users.create_user(username, email, password, **kw))


def _error(exc_info) -> ErrorType:
    return exc_info.value.error_type


class TestCreate:
    def test_identifiers_are_normalized(self, users: UserService) -> None:
        user = _create(users, username="  Alice ", email="Alice@Example.COM")
        assert user.username == "alice"
        assert user.email == "alice@example.com"
        assert user.is_email_verified is False
        assert user.hashed_password and user.hashed_password != "password123"
        assert len(user.id) == 32

    def test_duplicate_email(self, users: UserService) -> None:
        _create(users)
        with pytest.raises(AppError) as exc:
            _create(users, username="other", email="ALICE@example.com")
        assert _error(exc) == ErrorType.EMAIL_ALREADY_EXISTS

    def test_duplicate_username(self, users: UserService) -> None:
        _create(users)
        with pytest.raises(AppError) as exc:
            _create(users, username="Alice", email="other@example.com")
        assert _error(exc) == ErrorType.USER_NAME_ALREADY_EXISTS


class TestLookup:
    def test_get_by_each_key(self, users: UserService) -> None:
        user = _create(users)
        assert asyncio.run(users.get_user_by_id(user.id)).id == user.id
        assert asyncio.run(users.get_user_by_username("ALICE")).id == user.id
        assert asyncio.run(users.get_user_by_email("alice@example.com")).id == user.id

    def test_missing_user(self, users: UserService) -> None:
        with pytest.raises(AppError) as exc:
            asyncio.run(users.get_user_by_id("nope"))
        assert _error(exc) == ErrorType.USER_NOT_FOUND


class TestUpdate:
    def test_email_change_resets_verification(self, users: UserService) -> None:
        user = _create(users, is_email_verified=True)
        updated = asyncio.run(users.update_user(user.id, email="new@example.com"))
        assert updated.email == "new@example.com"
        assert updated.is_email_verified is False

    def test_same_email_keeps_verification(self, users: UserService) -> None:
        user = _create(users, is_email_verified=True)
        updated = asyncio.run(users.update_user(user.id, email="alice@example.com"))
        assert updated.is_email_verified is True

    def test_username_collision(self, users: UserService) -> None:
        _create(users)
        bob = _create(users, username="bob", email="bob@example.com")
        with pytest.raises(AppError) as exc:
            asyncio.run(users.update_user(bob.id, username="alice"))
        assert _error(exc) == ErrorType.USER_NAME_ALREADY_EXISTS

    def test_password_change(self, users: UserService) -> None:
        user = _create(users)
        asyncio.run(users.set_password(user.id, "brandnewpass"))
        assert asyncio.run(users.authenticate("alice@example.com", "brandnewpass")).id == user.id
        with pytest.raises(AppError):
            asyncio.run(users.authenticate("alice@example.com", "password123"))


class TestSoftDelete:
    def test_delete_hides_and_restore_returns(self, users: UserService) -> None:
        user = _create(users)
        deleted = asyncio.run(users.soft_delete_user(user.id))
        assert deleted.is_deleted is True
        with pytest.raises(AppError):
            asyncio.run(users.get_user_by_id(user.id))
        assert asyncio.run(users.list_users()) == []

        restored = asyncio.run(users.restore_user(user.id))
        assert restored.is_deleted is False
        assert [u.id for u in asyncio.run(users.list_users())] == [user.id]

    def test_deleted_user_cannot_log_in(self, users: UserService) -> None:
        user = _create(users)
        asyncio.run(users.soft_delete_user(user.id))
        with pytest.raises(AppError) as exc:
            asyncio.run(users.authenticate("alice@example.com", "password123"))
        assert _error(exc) == ErrorType.INVALID_CREDENTIALS


class TestAuthenticate:
    def test_success(self, users: UserService) -> None:
        user = _create(users)
        assert asyncio.run(users.authenticate("ALICE@example.com", "password123")).id == user.id

    @pytest.mark.parametrize(
        ("email", "password"),
        [("alice@example.com", "wrongpass"), ("nobody@example.com", "password123")],
    )
    def test_failures_are_indistinguishable(self, users: UserService, email: str, password: str) -> None:
        _create(users)
        with pytest.raises(AppError) as exc:
            asyncio.run(users.authenticate(email, password))
        assert _error(exc) == ErrorType.INVALID_CREDENTIALS

    def test_oauth_only_user_has_no_password(self, users: UserService) -> None:
        asyncio.run(users.find_or_create_oauth_user("google", "sub-1", "g@example.com"))
        with pytest.raises(AppError):
            asyncio.run(users.authenticate("g@example.com", ""))

    def test_bcrypt_runs_off_the_event_loop_thread(self, users: UserService, monkeypatch) -> None:
        _create(users)
        threads: list[int] = []

        def recording_verify(plain: str, hashed: str) -> bool:
            threads.append(threading.get_ident())
            return verify_password(plain, hashed)

        monkeypatch.setattr("auth.users.verify_password", recording_verify)

        async def login() -> int:
            await users.authenticate("alice@example.com", "password123")
            return threading.get_ident()

        loop_thread = asyncio.run(login())
        assert threads and loop_thread not in threads


class TestOAuthUsers:
    def test_new_oauth_user_is_verified(self, users: UserService) -> None:
        user = asyncio.run(users.find_or_create_oauth_user("google", "sub-1", "Jane.Doe@example.com"))
        assert user.is_email_verified is True
        assert user.oauth_provider == "google"
        assert user.username == "janedoe"

    def test_returning_user_matches_subject(self, users: UserService) -> None:
        first = asyncio.run(users.find_or_create_oauth_user("google", "sub-1", "jane@example.com"))
        again = asyncio.run(users.find_or_create_oauth_user("google", "sub-1", "changed@example.com"))
        assert again.id == first.id

    def test_existing_email_is_linked(self, users: UserService) -> None:
        local = _create(users, username="jane", email="jane@example.com")
        linked = asyncio.run(users.find_or_create_oauth_user("google", "sub-9", "jane@example.com"))
        assert linked.id == local.id
        assert linked.oauth_subject == "sub-9"
        assert linked.is_email_verified is True

    def test_username_collision_gets_suffix(self, users: UserService) -> None:
        _create(users, username="jane", email="jane@other.com")
        user = asyncio.run(users.find_or_create_oauth_user("google", "sub-2", "jane@example.com"))
        assert user.username == "jane1"
