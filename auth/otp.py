"""
auth/otp.py -- Email verification by one-time passcode.

request_email_verification() mails a numeric code and stores its HMAC with
an expiry; a newer request overwrites the older code. verify_email() checks
the code in constant time, marks the user verified and deletes the OTP so
it cannot be replayed. After max_attempts wrong guesses the code is deleted
and the user has to request a new one.

Mail goes out through run_in_threadpool: SMTPMailer.send blocks on smtplib.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from starlette.concurrency import run_in_threadpool

from auth.models import OtpPurpose, User
from auth.store import UserStore
from auth.tokens import hash_secret
from core.errors import AppError, ErrorType

logger = logging.getLogger("gatekeeper.auth.otp")


class OTPService:
    def __init__(
        self,
        store: UserStore,
        mailer,
        secret_key: str,
        *,
        length: int = 6,
        expire_seconds: int = 10 * 60,
        max_attempts: int = 5,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self._secret_key = secret_key
        self.length = length
        self.expire = timedelta(seconds=expire_seconds)
        self.max_attempts = max_attempts

    def _generate_code(self) -> str:
        return f"{secrets.randbelow(10**self.length):0{self.length}d}"

    async def request_email_verification(self, user: User) -> None:
        if user.is_email_verified:
            raise AppError(ErrorType.EMAIL_ALREADY_VERIFIED)
        code = self._generate_code()
        expiry_time = datetime.now(timezone.utc) + self.expire
        self.store.replace_otp(user.id, OtpPurpose.EMAIL_VERIFICATION, hash_secret(self._secret_key, code), expiry_time)
        minutes = int(self.expire.total_seconds() // 60)
        await run_in_threadpool(
            self.mailer.send,
            user.email,
            "Verify your email",
            f"<p>Your verification code is <b>{code}</b>.</p><p>It expires in {minutes} minutes.</p>",
            f"Your verification code is {code}. It expires in {minutes} minutes.",
        )
        logger.info("Email verification OTP sent to user %s", user.id)

    async def verify_email(self, user: User, code: str) -> None:
        if user.is_email_verified:
            raise AppError(ErrorType.EMAIL_ALREADY_VERIFIED)
        otp = self.store.get_otp(user.id, OtpPurpose.EMAIL_VERIFICATION)
        if otp is None:
            raise AppError(ErrorType.INVALID_OTP)
        if datetime.now(timezone.utc) > otp.expiry_time:
            self.store.delete_otp(otp.id)
            raise AppError(ErrorType.OTP_EXPIRED)
        if not hmac.compare_digest(otp.code_hash, hash_secret(self._secret_key, (code or "").strip())):
            if self.store.record_otp_failure(otp.id) >= self.max_attempts:
                self.store.delete_otp(otp.id)
                logger.warning("OTP for user %s discarded after %d failed attempts", user.id, self.max_attempts)
            raise AppError(ErrorType.INVALID_OTP)
        self.store.update_user(user.id, is_email_verified=True)
        self.store.delete_otp(otp.id)
        logger.info("Email verified for user %s", user.id)
