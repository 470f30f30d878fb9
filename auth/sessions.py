"""
auth/sessions.py -- Access/refresh token issuance and rotation.

Each login or renewal mints a fresh pair and appends the bearer-formatted
access token to the user's session_tokens collection. Old entries are never
pruned on renewal; an explicit logout removes only the token it presents.
get_current_user() accepts an access token only while it is still attached,
which is what makes logout effective before the JWT's own expiry.

Refresh tokens are not stored: a valid signature on a live user is enough
to renew.
"""

from __future__ import annotations

import logging

from auth.models import SessionTokens, TokenKind, User
from auth.store import UserStore
from auth.tokens import TokenCodec, bearer, strip_bearer
from core.errors import InvalidAccessError

logger = logging.getLogger("gatekeeper.auth.sessions")


class SessionTokenService:
    def __init__(self, store: UserStore, codec: TokenCodec) -> None:
        self.store = store
        self.codec = codec

    async def issue_and_attach(self, user: User) -> SessionTokens:
        access_token = bearer(self.codec.sign_access(user.id))
        refresh_token = bearer(self.codec.sign_refresh(user.id))
        self.store.add_session_token(user.id, access_token)
        return SessionTokens(access_token=access_token, refresh_token=refresh_token)

    async def renew(self, refresh_token: str) -> tuple[User, SessionTokens]:
        """Exchange a refresh token for a new pair.

        Raises InvalidTokenError / TokenSignatureExpiredError for a bad
        refresh token and InvalidAccessError if its user is gone or deleted.
        """
        payload = self.codec.verify(refresh_token, TokenKind.REFRESH)
        user = self.store.get_by_id(payload["user_id"])
        if user is None or user.is_deleted:
            raise InvalidAccessError()
        tokens = await self.issue_and_attach(user)
        logger.info("Renewed session tokens for user %s", user.id)
        return user, tokens

    async def authenticate(self, access_token: str) -> User:
        """Resolve a presented access token to its live user.

        The token must verify as an access token AND still be attached to the
        user; a logged-out token fails with InvalidAccessError.
        """
        payload = self.codec.verify(access_token, TokenKind.ACCESS)
        user = self.store.get_by_id(payload["user_id"])
        if user is None or user.is_deleted:
            raise InvalidAccessError()
        if not await self.is_attached(user.id, access_token):
            raise InvalidAccessError()
        return user

    async def is_attached(self, user_id: str, access_token: str) -> bool:
        return self.store.has_session_token(user_id, bearer(strip_bearer(access_token)))

    async def revoke(self, user_id: str, access_token: str) -> None:
        self.store.remove_session_token(user_id, bearer(strip_bearer(access_token)))
        logger.info("Revoked session token for user %s", user_id)
