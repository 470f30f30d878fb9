"""
auth/action_tokens.py -- Single-use, time-boxed tokens tied to one user and one action.

Lifecycle per user:

    create_action_token  ->  Issued
    verify_action_token  ->  Issued (read-only, repeatable)
    mark_token_as_used   ->  Consumed
    expiry_time passes   ->  Expired

Issuing always replaces the user's previous token, whatever its action: a
password-reset request invalidates a pending email-verification link for the
same user. Verification and consumption are separate calls so a caller can
validate a token, perform the side effect (e.g. change the password), and
only burn the token once that side effect succeeded. The service does not
enforce verify-then-consume ordering; that is the caller's contract.

Layer rule: no imports from api/ or rbac/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.models import TokenAction, TokenKind
from auth.store import ActionTokenStore
from auth.tokens import TokenCodec
from core.errors import InvalidAccessError, InvalidTokenTypeError, TokenExpiredError, TokenSignatureExpiredError

logger = logging.getLogger("gatekeeper.auth.action_tokens")


class ActionTokenService:
    def __init__(self, store: ActionTokenStore, codec: TokenCodec, window_seconds: int = 5 * 60) -> None:
        self.store = store
        self.codec = codec
        self.window = timedelta(seconds=window_seconds)

    async def create_action_token(self, user_id: str, action: TokenAction) -> str:
        """Sign and persist a token for (user_id, action); return the raw token.

        Delivering the token (link, email) is the caller's job.
        """
        token = self.codec.sign_action(user_id, action)
        expiry_time = datetime.now(timezone.utc) + self.window
        self.store.replace_token_for_user(user_id, action, token, expiry_time)
        logger.info("Issued %s token for user %s", TokenAction(action).value, user_id)
        return token

    async def verify_action_token(self, token: str, action: TokenAction) -> dict:
        """Return the decoded payload if the token is live for `action`.

        Raises:
            InvalidTokenError: bad signature or not an action token.
            InvalidTokenTypeError: token was issued for a different action.
            InvalidAccessError: no stored record (never issued or superseded).
            TokenExpiredError: record already used, or the window has passed
                (by the stored expiry_time or the JWT exp, whichever lapses first).
        """
        try:
            payload = self.codec.verify(token, TokenKind.ACTION)
        except TokenSignatureExpiredError as exc:
            raise TokenExpiredError() from exc

        if payload["action"] != TokenAction(action).value:
            raise InvalidTokenTypeError()

        stored = self.store.get_by_token(token)
        if stored is None:
            raise InvalidAccessError()

        if stored.is_used or datetime.now(timezone.utc) > stored.expiry_time:
            raise TokenExpiredError()

        return payload

    async def mark_token_as_used(self, token: str) -> None:
        stored = self.store.get_by_token(token)
        if stored is None:
            raise InvalidAccessError()
        self.store.update_by_id(stored.id, is_used=True)
        logger.info("Consumed %s token for user %s", stored.action.value, stored.user_id)
