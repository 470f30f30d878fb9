"""Unit tests for auth/otp.py -- email verification by one-time passcode."""

from __future__ import annotations

import asyncio
import re
import threading
from datetime import datetime, timedelta, timezone

import pytest

from auth.models import OtpPurpose, User
from auth.otp import OTPService
from core.errors import AppError, ErrorType
from core.mailer import LoggingMailer

SECRET = "otp-test-secret-key-with-32-characters"


@pytest.fixture
def user(user_store) -> User:
    return user_store.get_by_id(user_store.create_user(User(username="alice", email="alice@example.com")))


@pytest.fixture
def otp(user_store, mailer) -> OTPService:
    return OTPService(user_store, mailer, SECRET, length=6, expire_seconds=600)


def _sent_code(mailer, to: str) -> str:
    mail = mailer.last_to(to)
    assert mail is not None
    return re.search(r"\b(\d{6})\b", mail.text_body).group(1)


def test_request_mails_code_and_stores_only_hash(otp, user_store, mailer, user):
    asyncio.run(otp.request_email_verification(user))
    code = _sent_code(mailer, user.email)
    stored = user_store.get_otp(user.id, OtpPurpose.EMAIL_VERIFICATION)
    assert stored is not None
    assert code not in stored.code_hash


def test_verify_marks_email_and_consumes_code(otp, user_store, mailer, user):
    asyncio.run(otp.request_email_verification(user))
    asyncio.run(otp.verify_email(user, _sent_code(mailer, user.email)))
    assert user_store.get_by_id(user.id).is_email_verified is True
    assert user_store.get_otp(user.id, OtpPurpose.EMAIL_VERIFICATION) is None


def test_wrong_code(otp, user):
    asyncio.run(otp.request_email_verification(user))
    with pytest.raises(AppError) as exc:
        asyncio.run(otp.verify_email(user, "000000x"))
    assert exc.value.error_type == ErrorType.INVALID_OTP


def test_no_code_requested(otp, user):
    with pytest.raises(AppError) as exc:
        asyncio.run(otp.verify_email(user, "123456"))
    assert exc.value.error_type == ErrorType.INVALID_OTP


def test_newer_request_replaces_older_code(otp, mailer, user, user_store):
    asyncio.run(otp.request_email_verification(user))
    first = _sent_code(mailer, user.email)
    asyncio.run(otp.request_email_verification(user))
    second = _sent_code(mailer, user.email)
    if first != second:
        with pytest.raises(AppError):
            asyncio.run(otp.verify_email(user, first))
    asyncio.run(otp.verify_email(user, second))
    assert user_store.get_by_id(user.id).is_email_verified is True


def test_expired_code(otp, user_store, mailer, user):
    asyncio.run(otp.request_email_verification(user))
    code = _sent_code(mailer, user.email)
    stored = user_store.get_otp(user.id, OtpPurpose.EMAIL_VERIFICATION)
    user_store.replace_otp(
        user.id, OtpPurpose.EMAIL_VERIFICATION, stored.code_hash, datetime.now(timezone.utc) - timedelta(seconds=1)
    )
    with pytest.raises(AppError) as exc:
        asyncio.run(otp.verify_email(user, code))
    assert exc.value.error_type == ErrorType.OTP_EXPIRED
    assert user_store.get_otp(user.id, OtpPurpose.EMAIL_VERIFICATION) is None


def test_already_verified(otp, user_store, user):
    user_store.update_user(user.id, is_email_verified=True)
    verified = user_store.get_by_id(user.id)
    with pytest.raises(AppError) as exc:
        asyncio.run(otp.request_email_verification(verified))
    assert exc.value.error_type == ErrorType.EMAIL_ALREADY_VERIFIED


def test_code_is_discarded_after_max_wrong_guesses(user_store, mailer, user):
    otp = OTPService(user_store, mailer, SECRET, length=6, expire_seconds=600, max_attempts=3)
    asyncio.run(otp.request_email_verification(user))
    code = _sent_code(mailer, user.email)
    wrong = "000000" if code != "000000" else "111111"
    for _ in range(3):
        with pytest.raises(AppError):
            asyncio.run(otp.verify_email(user, wrong))
    assert user_store.get_otp(user.id, OtpPurpose.EMAIL_VERIFICATION) is None
    with pytest.raises(AppError) as exc:
        asyncio.run(otp.verify_email(user, code))
    assert exc.value.error_type == ErrorType.INVALID_OTP


def test_new_request_resets_wrong_guess_count(user_store, mailer, user):
    otp = OTPService(user_store, mailer, SECRET, length=6, expire_seconds=600, max_attempts=2)
    asyncio.run(otp.request_email_verification(user))
    first = _sent_code(mailer, user.email)
    with pytest.raises(AppError):
        asyncio.run(otp.verify_email(user, "000000" if first != "000000" else "111111"))
    asyncio.run(otp.request_email_verification(user))
    assert user_store.get_otp(user.id, OtpPurpose.EMAIL_VERIFICATION).attempts == 0
    asyncio.run(otp.verify_email(user, _sent_code(mailer, user.email)))
    assert user_store.get_by_id(user.id).is_email_verified is True


class _ThreadRecordingMailer(LoggingMailer):
    def send(self, to, subject, html_body, text_body=None):
        self.thread = threading.get_ident()
        return super().send(to, subject, html_body, text_body)


def test_mail_is_sent_off_the_event_loop_thread(user_store, user):
    mailer = _ThreadRecordingMailer()
    otp = OTPService(user_store, mailer, SECRET)

    async def request() -> int:
        await otp.request_email_verification(user)
        return threading.get_ident()

    loop_thread = asyncio.run(request())
    assert mailer.thread != loop_thread
