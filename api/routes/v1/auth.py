"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/sign-up               -- create a local account
  POST /api/v1/auth/login                 -- email/password; Bearer header + refresh cookie
  POST /api/v1/auth/logout                -- detach the presented access token (requires auth)
  POST /api/v1/auth/renew-token           -- new pair from the refresh token (header or cookie)
  POST /api/v1/auth/otp/request           -- mail an email-verification code
  POST /api/v1/auth/otp/verify            -- check the code, mark the email verified
  POST /api/v1/auth/forget-password       -- mail a reset-password link
  POST /api/v1/auth/reset-password        -- consume the reset token, set the password
  POST /api/v1/auth/verify-email/request  -- mail a verify-email link
  GET  /api/v1/auth/verify-email          -- consume the verify-email token
  GET  /api/v1/auth/me                    -- current user (requires auth)
  GET  /api/v1/auth/providers             -- enabled OAuth providers (public)
  GET  /api/v1/auth/google                -- redirect to Google
  GET  /api/v1/auth/google/callback       -- Google callback; refresh cookie + redirect

Security:
  [H2] login, otp/request, otp/verify and forget-password are rate-limited per IP.
  [C1] UserService.authenticate() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries tokens.
  forget-password answers identically whether or not the email exists.
  Mail is sent through run_in_threadpool; SMTPMailer.send blocks.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import (
    EmailRequest,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    OtpVerifyRequest,
    ResetPasswordRequest,
    SignUpRequest,
    SignUpResponse,
    UserEnvelope,
    UserResponse,
)
from auth.dependencies import bearer_token, get_current_user
from auth.models import SessionTokens, TokenAction, User
from auth.oauth import decode_redirect_state, encode_redirect_state, get_enabled_providers, get_oauth_user_info
from auth.tokens import strip_bearer
from core.config import get_settings
from core.errors import AppError, ErrorType

logger = logging.getLogger("gatekeeper.api.auth")

REFRESH_COOKIE = "refresh-token"

SIGN_UP_SUCCESS = "Account created successfully."
LOGIN_SUCCESS = "Logged in successfully."
LOGOUT_SUCCESS = "Logged out successfully."
RENEW_SUCCESS = "Tokens renewed successfully."
OTP_SENT = "Verification code sent to your email."
EMAIL_VERIFIED = "Email verified successfully."
RESET_LINK_SENT = "If an account exists for that email, a reset link has been sent."
PASSWORD_RESET = "Password reset successfully."
VERIFY_LINK_SENT = "Verification link sent to your email."

_settings = get_settings()

# Auth policy:
# - /sign-up, /login, /renew-token, /otp/*, /forget-password, /reset-password,
#   /verify-email*, /providers, /google*: public
# - /logout, /me: requires auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_refresh_cookie(response, refresh_token: str) -> None:
    # Stored without the "Bearer " prefix; renew-token accepts either form.
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=strip_bearer(refresh_token),
        max_age=_settings.refresh_token_expire_seconds,
        httponly=True,
        secure=_settings.secure_cookies,
        samesite="lax",
    )


def _session_response(message: str, tokens: SessionTokens) -> JSONResponse:
    resp = JSONResponse(content=MessageResponse(message=message).model_dump(by_alias=True))
    resp.headers["Authorization"] = tokens.access_token
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    _set_refresh_cookie(resp, tokens.refresh_token)
    return resp


def _oauth_failure() -> RedirectResponse:
    return RedirectResponse(f"{_settings.client_url}/login?error=failed", status_code=302)


# ---------------------------------------------------------------------------
# Sign-up / login / logout / renew
# ---------------------------------------------------------------------------


@router.post("/auth/sign-up", response_model=SignUpResponse, status_code=201)
async def sign_up(request: Request, body: SignUpRequest) -> SignUpResponse:
    users = request.app.state.user_service
    user = await users.create_user(body.username, body.email, body.password)
    return SignUpResponse(message=SIGN_UP_SUCCESS, user=UserResponse.from_user(user))


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=MessageResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Every failure is the same INVALID_CREDENTIALS error, so the response
    never reveals whether the email is registered.
    """
    user = await request.app.state.user_service.authenticate(body.email, body.password)
    tokens = await request.app.state.session_service.issue_and_attach(user)
    logger.info("User %s logged in", user.id)
    return _session_response(LOGIN_SUCCESS, tokens)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Detach the presented access token and clear the refresh cookie.

    Other sessions of the same user stay valid.
    """
    await request.app.state.session_service.revoke(current_user.id, request.state.access_token)
    resp = JSONResponse(content=MessageResponse(message=LOGOUT_SUCCESS).model_dump(by_alias=True))
    resp.delete_cookie(REFRESH_COOKIE)
    return resp


@router.post("/auth/renew-token", response_model=MessageResponse)
async def renew_token(request: Request) -> JSONResponse:
    refresh_token = bearer_token(request) or request.cookies.get(REFRESH_COOKIE)
    if not refresh_token:
        raise AppError(ErrorType.UNAUTHORIZED, "Refresh token missing.")
    _, tokens = await request.app.state.session_service.renew(refresh_token)
    return _session_response(RENEW_SUCCESS, tokens)


@router.get("/auth/me", response_model=UserEnvelope)
async def me(current_user: User = Depends(get_current_user)) -> UserEnvelope:
    return UserEnvelope(user=UserResponse.from_user(current_user))


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@limiter.limit(_settings.otp_rate_limit)  # [H2]
@router.post("/auth/otp/request", response_model=MessageResponse)
async def request_otp(request: Request, body: EmailRequest) -> MessageResponse:
    user = await request.app.state.user_service.get_user_by_email(body.email)
    await request.app.state.otp_service.request_email_verification(user)
    return MessageResponse(message=OTP_SENT)


@limiter.limit(_settings.otp_rate_limit)  # [H2]
@router.post("/auth/otp/verify", response_model=MessageResponse)
async def verify_otp(request: Request, body: OtpVerifyRequest) -> MessageResponse:
    user = await request.app.state.user_service.get_user_by_email(body.email)
    await request.app.state.otp_service.verify_email(user, body.otp)
    return MessageResponse(message=EMAIL_VERIFIED)


@router.post("/auth/verify-email/request", response_model=MessageResponse)
async def request_verify_email(request: Request, body: EmailRequest) -> MessageResponse:
    user = await request.app.state.user_service.get_user_by_email(body.email)
    if user.is_email_verified:
        raise AppError(ErrorType.EMAIL_ALREADY_VERIFIED)
    token = await request.app.state.action_token_service.create_action_token(user.id, TokenAction.VERIFY_EMAIL)
    link = f"{_settings.client_url}/verify-email?token={token}"
    await run_in_threadpool(
        request.app.state.mailer.send,
        user.email,
        "Verify your email",
        f'<p>Confirm your email address: <a href="{link}">{link}</a></p>',
        f"Confirm your email address: {link}",
    )
    return MessageResponse(message=VERIFY_LINK_SENT)


@router.get("/auth/verify-email", response_model=MessageResponse)
async def verify_email(request: Request, token: str) -> MessageResponse:
    tokens = request.app.state.action_token_service
    payload = await tokens.verify_action_token(token, TokenAction.VERIFY_EMAIL)
    await request.app.state.user_service.mark_email_verified(payload["user_id"])
    await tokens.mark_token_as_used(token)
    return MessageResponse(message=EMAIL_VERIFIED)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(_settings.otp_rate_limit)  # [H2]
@router.post("/auth/forget-password", response_model=MessageResponse)
async def forget_password(request: Request, body: EmailRequest) -> MessageResponse:
    """Mail a single-use reset link. Unknown emails get the same response."""
    try:
        user = await request.app.state.user_service.get_user_by_email(body.email)
    except AppError:
        logger.info("Password reset requested for unknown email")
        return MessageResponse(message=RESET_LINK_SENT)

    token = await request.app.state.action_token_service.create_action_token(user.id, TokenAction.RESET_PASSWORD)
    link = f"{_settings.client_url}/reset-password?token={token}"
    await run_in_threadpool(
        request.app.state.mailer.send,
        user.email,
        "Reset your password",
        f'<p>Reset your password: <a href="{link}">{link}</a></p><p>The link expires in a few minutes.</p>',
        f"Reset your password: {link}",
    )
    return MessageResponse(message=RESET_LINK_SENT)


@router.post("/auth/reset-password", response_model=MessageResponse)
async def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Verify the token, change the password, then burn the token.

    The token is consumed only after the password write succeeded, so a
    failed write leaves the link usable.
    """
    tokens = request.app.state.action_token_service
    payload = await tokens.verify_action_token(body.token, TokenAction.RESET_PASSWORD)
    await request.app.state.user_service.set_password(payload["user_id"], body.password)
    await tokens.mark_token_as_used(body.token)
    logger.info("Password reset for user %s", payload["user_id"])
    return MessageResponse(message=PASSWORD_RESET)


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Public -- the login page calls this to decide which buttons to render."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


@router.get("/auth/google")
async def google_login(request: Request, redirect_url: str | None = Query(default=None, alias="redirectUrl")):
    """Redirect the browser to Google. `redirectUrl` is where the callback lands."""
    if not any(p["name"] == "google" for p in get_enabled_providers()):
        return _oauth_failure()
    client = request.app.state.oauth.create_client("google")
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri, state=encode_redirect_state(redirect_url))


@router.get("/auth/google/callback", name="google_callback")
async def google_callback(request: Request) -> RedirectResponse:
    """Exchange the code, resolve the user, set the refresh cookie and redirect.

    The client then calls /auth/renew-token with the cookie to obtain an
    access token.
    """
    if not any(p["name"] == "google" for p in get_enabled_providers()):
        return _oauth_failure()
    client = request.app.state.oauth.create_client("google")
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider 'google'")
        return _oauth_failure()

    try:
        email, subject = await get_oauth_user_info(client, "google", token)
    except ValueError:
        logger.warning("OAuth login rejected: unverified or missing email from 'google'")
        return _oauth_failure()

    user = await request.app.state.user_service.find_or_create_oauth_user("google", subject, email)
    if user.is_deleted:
        return _oauth_failure()

    tokens = await request.app.state.session_service.issue_and_attach(user)
    target = decode_redirect_state(request.query_params.get("state"), _settings.client_url)
    resp = RedirectResponse(target, status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    _set_refresh_cookie(resp, tokens.refresh_token)
    logger.info("User %s logged in via google", user.id)
    return resp
