"""
auth/tokens.py -- JWT codec, password hashing, and secret hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. One codec signs three kinds of token, told
       apart by the "type" claim:
         action  -- {user_id, action}, exp = action-token window
         access  -- {user_id}, short lived (15 minutes by default)
         refresh -- {user_id}, long lived (7 days by default)
       Every token carries a random jti so two tokens minted for the same
       claims in the same second are still distinct strings. verify() raises
       typed AppErrors instead of returning None, because the action-token
       flow must tell "bad signature" apart from "expired signature".

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in UserService.authenticate() so response
       time does not reveal whether an email exists [C1].

  OTP codes: HMAC-SHA256(SECRET_KEY, code). Codes are short-lived and
       rate-limited, so bcrypt's slowness buys nothing; the HMAC keeps a DB
       dump from revealing live codes.

Layer rule: no imports from api/ or rbac/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenAction, TokenKind
from core.config import Settings, get_settings
from core.errors import InvalidTokenError, TokenSignatureExpiredError

logger = logging.getLogger("gatekeeper.auth")

_ALGORITHM = "HS256"
BEARER_PREFIX = "Bearer "

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates at 72 bytes; the API layer caps passwords at 72
    characters so that limit is never silently hit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than later ones.
DUMMY_HASH: str = hash_password("gatekeeper_timing_dummy")


def hash_secret(secret_key: str, value: str) -> str:
    """Return HMAC-SHA256(secret_key, value) as a hex string."""
    return hmac.new(secret_key.encode(), value.encode(), hashlib.sha256).hexdigest()


def bearer(token: str) -> str:
    return f"{BEARER_PREFIX}{token}"


def strip_bearer(value: str) -> str:
    if value.startswith(BEARER_PREFIX):
        return value[len(BEARER_PREFIX) :]
    return value


# ---------------------------------------------------------------------------
# JWT codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Signs and verifies the three token kinds with one secret.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        token = codec.sign_action("u1", TokenAction.RESET_PASSWORD)
        payload = codec.verify(token, TokenKind.ACTION)
    """

    def __init__(
        self,
        secret_key: str,
        *,
        action_expire_seconds: int = 5 * 60,
        access_expire_seconds: int = 15 * 60,
        refresh_expire_seconds: int = 7 * 24 * 60 * 60,
        algorithm: str = _ALGORITHM,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._lifetimes = {
            TokenKind.ACTION: action_expire_seconds,
            TokenKind.ACCESS: access_expire_seconds,
            TokenKind.REFRESH: refresh_expire_seconds,
        }

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TokenCodec":
        settings = settings or get_settings()
        return cls(
            settings.secret_key,
            action_expire_seconds=settings.action_token_expire_seconds,
            access_expire_seconds=settings.access_token_expire_seconds,
            refresh_expire_seconds=settings.refresh_token_expire_seconds,
        )

    def sign(self, claims: dict, kind: TokenKind) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "type": kind.value,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": now + timedelta(seconds=self._lifetimes[kind]),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def sign_action(self, user_id: str, action: TokenAction) -> str:
        return self.sign({"user_id": user_id, "action": TokenAction(action).value}, TokenKind.ACTION)

    def sign_access(self, user_id: str) -> str:
        return self.sign({"user_id": user_id}, TokenKind.ACCESS)

    def sign_refresh(self, user_id: str) -> str:
        return self.sign({"user_id": user_id}, TokenKind.REFRESH)

    def verify(self, token: str, expected_kind: TokenKind) -> dict:
        """Decode and check a token of the given kind. Returns the claims dict.

        Raises:
            TokenSignatureExpiredError: the exp claim has elapsed.
            InvalidTokenError: bad signature, corrupt token, missing claims,
                or a "type" claim other than expected_kind.
        """
        try:
            payload = jwt.decode(strip_bearer(token or ""), self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise TokenSignatureExpiredError() from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc

        if payload.get("type") != TokenKind(expected_kind).value or not payload.get("user_id"):
            logger.debug("Rejected token: expected kind %s, got %r", expected_kind, payload.get("type"))
            raise InvalidTokenError()
        if expected_kind == TokenKind.ACTION and not payload.get("action"):
            raise InvalidTokenError()
        return payload
