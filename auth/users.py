"""
auth/users.py -- User account use cases.

UserService wraps UserStore with the rules the routes rely on: unique
email and username, lower-cased identifiers, soft delete/restore, and
timing-equalized password authentication [C1]. Every lookup that misses
raises AppError(USER_NOT_FOUND) so routes never test for None.

bcrypt runs through run_in_threadpool so hashing never stalls the event loop.

Soft-deleted users are invisible to the getters unless include_deleted is
passed; restore_user() is the one path that needs them.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool

from auth.models import User
from auth.store import UserStore
from auth.tokens import DUMMY_HASH, hash_password, verify_password
from core.errors import AppError, ErrorType

logger = logging.getLogger("gatekeeper.auth.users")

_USERNAME_MAX = 18


def normalize(value: str) -> str:
    return (value or "").strip().lower()


class UserService:
    def __init__(self, store: UserStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_user(
        self,
        username: str,
        email: str,
        password: str | None,
        *,
        is_email_verified: bool = False,
        role_id: str | None = None,
        oauth_provider: str | None = None,
        oauth_subject: str | None = None,
    ) -> User:
        username, email = normalize(username), normalize(email)
        self._ensure_unique(email=email, username=username)

        user = User(
            username=username,
            email=email,
            hashed_password=await run_in_threadpool(hash_password, password) if password else None,
            is_email_verified=is_email_verified,
            role_id=role_id,
            oauth_provider=oauth_provider,
            oauth_subject=oauth_subject,
        )
        try:
            user_id = self.store.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent sign-up; report which field collided.
            self._ensure_unique(email=email, username=username)
            raise AppError(ErrorType.INTERNAL_SERVER_ERROR) from exc
        logger.info("Created user %s (%s)", user_id, username)
        return await self.get_user_by_id(user_id)

    async def find_or_create_oauth_user(self, provider: str, subject: str, email: str) -> User:
        """Resolve an OAuth identity to a user, linking or creating as needed.

        Returning users match on (provider, subject). A first OAuth login for
        an existing email links the identity to that account. Otherwise a
        new, already-verified user is created with a username derived from
        the email's local part.
        """
        user = self.store.get_by_oauth(provider, subject)
        if user is not None:
            return user

        email = normalize(email)
        user = self.store.get_by_email(email)
        if user is not None:
            self.store.update_user(user.id, oauth_provider=provider, oauth_subject=subject, is_email_verified=True)
            logger.info("Linked %s identity to user %s", provider, user.id)
            return self.store.get_by_id(user.id)

        return await self.create_user(
            self._available_username(email),
            email,
            None,
            is_email_verified=True,
            oauth_provider=provider,
            oauth_subject=subject,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def list_users(self) -> list[User]:
        return self.store.list_users()

    async def get_user_by_id(self, user_id: str, include_deleted: bool = False) -> User:
        return self._visible(self.store.get_by_id(user_id), include_deleted)

    async def get_user_by_username(self, username: str) -> User:
        return self._visible(self.store.get_by_username(normalize(username)))

    async def get_user_by_email(self, email: str) -> User:
        return self._visible(self.store.get_by_email(normalize(email)))

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    async def update_user(
        self,
        user_id: str,
        *,
        username: str | None = None,
        email: str | None = None,
        password: str | None = None,
        role_id: str | None = None,
    ) -> User:
        user = await self.get_user_by_id(user_id)
        fields: dict = {}
        if username is not None and normalize(username) != user.username:
            fields["username"] = normalize(username)
            self._ensure_unique(username=fields["username"])
        if email is not None and normalize(email) != user.email:
            fields["email"] = normalize(email)
            self._ensure_unique(email=fields["email"])
            # A changed address has not been verified yet.
            fields["is_email_verified"] = False
        if password is not None:
            fields["hashed_password"] = await run_in_threadpool(hash_password, password)
        if role_id is not None:
            fields["role_id"] = role_id
        if fields:
            self.store.update_user(user_id, **fields)
        return await self.get_user_by_id(user_id)

    async def set_password(self, user_id: str, password: str) -> None:
        await self.get_user_by_id(user_id)
        hashed = await run_in_threadpool(hash_password, password)
        self.store.update_user(user_id, hashed_password=hashed)

    async def mark_email_verified(self, user_id: str) -> None:
        self.store.update_user(user_id, is_email_verified=True)

    async def soft_delete_user(self, user_id: str) -> User:
        await self.get_user_by_id(user_id)
        self.store.update_user(user_id, is_deleted=True)
        return await self.get_user_by_id(user_id, include_deleted=True)

    async def restore_user(self, user_id: str) -> User:
        await self.get_user_by_id(user_id, include_deleted=True)
        self.store.update_user(user_id, is_deleted=False)
        return await self.get_user_by_id(user_id)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self, email: str, password: str) -> User:
        """Check an email/password pair with timing equalization [C1].

        bcrypt runs whether or not the email exists, so response time does
        not reveal which accounts exist. Every failure is the same
        INVALID_CREDENTIALS error.
        """
        user = self.store.get_by_email(normalize(email))
        if user is None or user.hashed_password is None or user.is_deleted:
            await run_in_threadpool(verify_password, password, DUMMY_HASH)
            raise AppError(ErrorType.INVALID_CREDENTIALS)
        if not await run_in_threadpool(verify_password, password, user.hashed_password):
            raise AppError(ErrorType.INVALID_CREDENTIALS)
        return user

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_unique(self, *, email: str | None = None, username: str | None = None) -> None:
        if email is not None and self.store.get_by_email(email) is not None:
            raise AppError(ErrorType.EMAIL_ALREADY_EXISTS)
        if username is not None and self.store.get_by_username(username) is not None:
            raise AppError(ErrorType.USER_NAME_ALREADY_EXISTS)

    @staticmethod
    def _visible(user: User | None, include_deleted: bool = False) -> User:
        if user is None or (user.is_deleted and not include_deleted):
            raise AppError(ErrorType.USER_NOT_FOUND)
        return user

    def _available_username(self, email: str) -> str:
        """Derive a free username (letter first, alphanumeric, 3-18 chars) from an email."""
        base = re.sub(r"[^a-z0-9]", "", email.split("@", 1)[0].lower())
        if not base or not base[0].isalpha():
            base = f"user{base}"
        base = base[:_USERNAME_MAX].ljust(3, "0")
        candidate, n = base, 1
        while self.store.get_by_username(candidate) is not None:
            suffix = str(n)
            candidate = f"{base[: _USERNAME_MAX - len(suffix)]}{suffix}"
            n += 1
        return candidate
