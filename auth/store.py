"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and ActionTokenStore are the repositories; the _row_to_* functions
are the mappers. Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Tables:
  users           -- accounts; username and email are UNIQUE.
  session_tokens  -- append-only collection of bearer-formatted access tokens
                     per user. Login and renewal add rows; only an explicit
                     logout removes one.
  action_tokens   -- UNIQUE(user_id): one live action token per user.
  otps            -- UNIQUE(user_id, purpose): one live OTP per purpose.

Timestamps are ISO 8601 UTC strings, parsed back to aware datetimes where a
model carries a datetime.

Layer rule: no imports from api/ or rbac/.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import ActionToken, Otp, OtpPurpose, TokenAction, User
from core.db import from_iso, make_engine, new_id, now_iso, to_iso, upsert

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'gatekeeper.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("username", String(18), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for OAuth-only users
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("is_deleted", Integer, nullable=False, server_default="0"),
    Column("role_id", String(32)),
    Column("oauth_provider", String(30)),
    Column("oauth_subject", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_session_tokens = Table(
    "session_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(32), nullable=False),
    Column("access_token", Text, nullable=False),  # "Bearer <jwt>"
    Column("created_at", String(32), nullable=False),
    Index("ix_session_tokens_user_id", "user_id"),
)

_action_tokens = Table(
    "action_tokens",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), nullable=False, unique=True),
    Column("action", String(40), nullable=False),
    Column("token", Text, nullable=False),
    Column("expiry_time", String(32), nullable=False),
    Column("is_used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Index("ix_action_tokens_token", "token"),
)

_otps = Table(
    "otps",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), nullable=False),
    Column("purpose", String(40), nullable=False),
    Column("code_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("expiry_time", String(32), nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),  # failed verifications
    UniqueConstraint("user_id", "purpose", name="uq_otps_user_purpose"),
)


# ---------------------------------------------------------------------------
# User repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, session tokens and OTPs.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(username="alice", email="alice@example.com"))
        user = store.get_by_email("alice@example.com")
        store.close()
    """

    _UPDATABLE = {
        "username",
        "email",
        "hashed_password",
        "is_email_verified",
        "is_deleted",
        "role_id",
        "oauth_provider",
        "oauth_subject",
    }

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. UserService checks both first; the constraint catches races.
        """
        user_id = user.id or new_id()
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    is_email_verified=1 if user.is_email_verified else 0,
                    is_deleted=1 if user.is_deleted else 0,
                    role_id=user.role_id,
                    oauth_provider=user.oauth_provider,
                    oauth_subject=user.oauth_subject,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Exact match; usernames are stored lower-cased."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Exact match; emails are stored lower-cased."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_oauth(self, provider: str, subject: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.oauth_provider == provider) & (_users.c.oauth_subject == subject))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, include_deleted: bool = False) -> list[User]:
        """Return users ordered by username."""
        query = _users.select().order_by(_users.c.username)
        if not include_deleted:
            query = query.where(_users.c.is_deleted == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields. Returns True if a row was updated.

        Unknown field names raise ValueError rather than being ignored.
        Booleans are stored as 0/1.
        """
        unknown = set(fields) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        for flag in ("is_email_verified", "is_deleted"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def add_session_token(self, user_id: str, access_token: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_session_tokens.insert().values(user_id=user_id, access_token=access_token, created_at=now_iso()))
            conn.commit()

    def has_session_token(self, user_id: str, access_token: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_session_tokens.c.id).where(
                    (_session_tokens.c.user_id == user_id) & (_session_tokens.c.access_token == access_token)
                )
            ).fetchone()
        return row is not None

    def list_session_tokens(self, user_id: str) -> list[str]:
        """Access tokens for a user, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_session_tokens.c.access_token)
                .where(_session_tokens.c.user_id == user_id)
                .order_by(_session_tokens.c.id)
            ).fetchall()
        return [r.access_token for r in rows]

    def remove_session_token(self, user_id: str, access_token: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _session_tokens.delete().where(
                    (_session_tokens.c.user_id == user_id) & (_session_tokens.c.access_token == access_token)
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # OTPs
    # ------------------------------------------------------------------

    def replace_otp(self, user_id: str, purpose: OtpPurpose, code_hash: str, expiry_time: datetime) -> Otp:
        """Upsert keyed by (user_id, purpose); a new OTP overwrites the old one."""
        values = {
            "id": new_id(),
            "user_id": user_id,
            "purpose": OtpPurpose(purpose).value,
            "code_hash": code_hash,
            "expiry_time": to_iso(expiry_time),
            "attempts": 0,
        }
        stmt = upsert(self.engine, _otps).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "purpose"],
            set_={"code_hash": stmt.excluded.code_hash, "expiry_time": stmt.excluded.expiry_time, "attempts": 0},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
            row = conn.execute(
                _otps.select().where((_otps.c.user_id == user_id) & (_otps.c.purpose == values["purpose"]))
            ).fetchone()
        return _row_to_otp(row)

    def get_otp(self, user_id: str, purpose: OtpPurpose) -> Otp | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _otps.select().where((_otps.c.user_id == user_id) & (_otps.c.purpose == OtpPurpose(purpose).value))
            ).fetchone()
        return _row_to_otp(row) if row is not None else None

    def record_otp_failure(self, otp_id: str) -> int:
        """Increment the failed-attempt counter; return the new count."""
        with self.engine.begin() as conn:
            conn.execute(_otps.update().where(_otps.c.id == otp_id).values(attempts=_otps.c.attempts + 1))
            count = conn.execute(select(_otps.c.attempts).where(_otps.c.id == otp_id)).scalar()
        return count or 0

    def delete_otp(self, otp_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_otps.delete().where(_otps.c.id == otp_id))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Action token repository
# ---------------------------------------------------------------------------


class ActionTokenStore:
    """Repository for ActionToken records.

    replace_token_for_user() is a single INSERT ... ON CONFLICT(user_id)
    DO UPDATE statement, so two concurrent issuances for one user leave
    exactly one row behind: the last writer's.
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def replace_token_for_user(
        self,
        user_id: str,
        action: TokenAction,
        token: str,
        expiry_time: datetime,
    ) -> ActionToken:
        """Create the user's action token, overwriting any previous one.

        The overwrite is total: action, token, expiry and is_used=False all
        replace the old values. The row id is kept.
        """
        stamp = now_iso()
        stmt = upsert(self.engine, _action_tokens).values(
            id=new_id(),
            user_id=user_id,
            action=TokenAction(action).value,
            token=token,
            expiry_time=to_iso(expiry_time),
            is_used=0,
            created_at=stamp,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "action": stmt.excluded.action,
                "token": stmt.excluded.token,
                "expiry_time": stmt.excluded.expiry_time,
                "is_used": 0,
                "created_at": stmt.excluded.created_at,
            },
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
            row = conn.execute(_action_tokens.select().where(_action_tokens.c.user_id == user_id)).fetchone()
        return _row_to_action_token(row)

    def get_by_token(self, token: str) -> ActionToken | None:
        """Exact-match lookup on the token string."""
        with self.engine.connect() as conn:
            row = conn.execute(_action_tokens.select().where(_action_tokens.c.token == token)).fetchone()
        return _row_to_action_token(row) if row is not None else None

    def get_by_user(self, user_id: str) -> ActionToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_action_tokens.select().where(_action_tokens.c.user_id == user_id)).fetchone()
        return _row_to_action_token(row) if row is not None else None

    def update_by_id(self, token_id: str, **fields) -> ActionToken | None:
        """Partial update. Accepts is_used and expiry_time.

        Returns the updated record, or None if token_id was not found.
        """
        unknown = set(fields) - {"is_used", "expiry_time"}
        if unknown:
            raise ValueError(f"Unknown action token fields: {unknown!r}")
        if "is_used" in fields:
            fields["is_used"] = 1 if fields["is_used"] else 0
        if "expiry_time" in fields:
            fields["expiry_time"] = to_iso(fields["expiry_time"])
        with self.engine.begin() as conn:
            result = conn.execute(_action_tokens.update().where(_action_tokens.c.id == token_id).values(**fields))
            if result.rowcount == 0:
                return None
            row = conn.execute(_action_tokens.select().where(_action_tokens.c.id == token_id)).fetchone()
        return _row_to_action_token(row)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        is_email_verified=bool(row.is_email_verified),
        is_deleted=bool(row.is_deleted),
        role_id=row.role_id,
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_action_token(row) -> ActionToken:
    return ActionToken(
        id=row.id,
        user_id=row.user_id,
        action=TokenAction(row.action),
        token=row.token,
        expiry_time=from_iso(row.expiry_time),
        is_used=bool(row.is_used),
        created_at=row.created_at,
    )


def _row_to_otp(row) -> Otp:
    return Otp(
        id=row.id,
        user_id=row.user_id,
        purpose=OtpPurpose(row.purpose),
        code_hash=row.code_hash,
        expiry_time=from_iso(row.expiry_time),
        attempts=row.attempts,
    )
