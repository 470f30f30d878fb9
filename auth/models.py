"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores map rows to
these; services and routes do the work.

Layer rule: no imports from api/ or rbac/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TokenAction(str, Enum):
    """Purpose an action token is issued for. Compared by equality only."""

    VERIFY_EMAIL = "verifyEmail"
    RESET_PASSWORD = "resetPassword"
    CHANGE_SUBSCRIPTION = "changeSubscription"


class TokenKind(str, Enum):
    """Value of the JWT "type" claim."""

    ACTION = "action"
    ACCESS = "access"
    REFRESH = "refresh"


class OtpPurpose(str, Enum):
    EMAIL_VERIFICATION = "sendEmailVerificationOTP"


@dataclass
class User:
    """An account. username and email are both unique and stored lower-cased.

    hashed_password is None for OAuth-only users. is_deleted is a soft-delete
    flag: deleted users cannot log in or renew tokens but can be restored.
    role_id points at rbac.models.Role; None means no permissions.
    """

    username: str
    email: str
    id: str | None = None
    hashed_password: str | None = None
    is_email_verified: bool = False
    is_deleted: bool = False
    role_id: str | None = None
    oauth_provider: str | None = None  # "google"
    oauth_subject: str | None = None  # provider's stable user ID
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class ActionToken:
    """Single-use, time-boxed token. At most one row per user_id."""

    user_id: str
    action: TokenAction
    token: str
    expiry_time: datetime
    is_used: bool = False
    id: str | None = None
    created_at: str | None = None


@dataclass
class Otp:
    """One-time passcode. Only the HMAC of the code is stored."""

    user_id: str
    purpose: OtpPurpose
    code_hash: str
    expiry_time: datetime
    attempts: int = 0
    id: str | None = None


@dataclass
class SessionTokens:
    """Bearer-formatted access/refresh pair returned by login and renewal."""

    access_token: str
    refresh_token: str
