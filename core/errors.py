"""
core/errors.py -- Application error codes and exception hierarchy.

Every failure the services surface to a caller is an AppError subclass that
carries a stable ErrorType code. Services raise; they never build HTTP
responses. api/main.py owns the single exception handler that turns an
AppError into the ErrorResponse envelope using ERROR_MAP.

Layer rule: core/ is the kernel. No imports from api/, auth/, or rbac/.
"""

from __future__ import annotations

from enum import Enum


class ErrorType(str, Enum):
    # Tokens
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_TOKEN_TYPE = "INVALID_TOKEN_TYPE"
    INVALID_ACCESS = "INVALID_ACCESS"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_SIGNATURE_EXPIRED = "TOKEN_SIGNATURE_EXPIRED"
    # Users / auth
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"
    USER_NAME_ALREADY_EXISTS = "USER_NAME_ALREADY_EXISTS"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    EMAIL_ALREADY_VERIFIED = "EMAIL_ALREADY_VERIFIED"
    INVALID_OTP = "INVALID_OTP"
    OTP_EXPIRED = "OTP_EXPIRED"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    # RBAC
    ROLE_NOT_FOUND = "ROLE_NOT_FOUND"
    ROLE_ALREADY_EXISTS = "ROLE_ALREADY_EXISTS"
    SYSTEM_ROLE_PROTECTED = "SYSTEM_ROLE_PROTECTED"
    PERMISSION_NOT_FOUND = "PERMISSION_NOT_FOUND"
    PERMISSION_ALREADY_EXISTS = "PERMISSION_ALREADY_EXISTS"
    ROLE_PERMISSION_ALREADY_EXISTS = "ROLE_PERMISSION_ALREADY_EXISTS"
    ROLE_PERMISSION_NOT_FOUND = "ROLE_PERMISSION_NOT_FOUND"
    # Generic
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


# code -> (HTTP status, client-facing message)
ERROR_MAP: dict[ErrorType, tuple[int, str]] = {
    ErrorType.INVALID_TOKEN: (401, "Invalid token."),
    ErrorType.INVALID_TOKEN_TYPE: (400, "Token is not valid for this action."),
    ErrorType.INVALID_ACCESS: (403, "Invalid access."),
    ErrorType.TOKEN_EXPIRED: (410, "Token has expired or was already used."),
    ErrorType.TOKEN_SIGNATURE_EXPIRED: (401, "Token signature has expired."),
    ErrorType.EMAIL_ALREADY_EXISTS: (409, "A user with that email already exists."),
    ErrorType.USER_NAME_ALREADY_EXISTS: (409, "A user with that username already exists."),
    ErrorType.USER_NOT_FOUND: (404, "User not found."),
    ErrorType.INVALID_CREDENTIALS: (401, "Invalid email or password."),
    ErrorType.EMAIL_ALREADY_VERIFIED: (400, "Email is already verified."),
    ErrorType.INVALID_OTP: (400, "Invalid OTP."),
    ErrorType.OTP_EXPIRED: (410, "OTP has expired."),
    ErrorType.UNAUTHORIZED: (401, "Authentication required."),
    ErrorType.FORBIDDEN: (403, "You do not have permission to perform this action."),
    ErrorType.ROLE_NOT_FOUND: (404, "Role not found."),
    ErrorType.ROLE_ALREADY_EXISTS: (409, "A role with that name already exists."),
    ErrorType.SYSTEM_ROLE_PROTECTED: (400, "System roles cannot be modified or deleted."),
    ErrorType.PERMISSION_NOT_FOUND: (404, "Permission not found."),
    ErrorType.PERMISSION_ALREADY_EXISTS: (409, "A permission with that name already exists."),
    ErrorType.ROLE_PERMISSION_ALREADY_EXISTS: (409, "That permission is already linked to the role."),
    ErrorType.ROLE_PERMISSION_NOT_FOUND: (404, "Role permission not found."),
    ErrorType.INTERNAL_SERVER_ERROR: (500, "An unexpected error occurred."),
}


class AppError(Exception):
    """Base class for every error a service surfaces to its caller.

    Subclasses pin error_type; the generic form takes it as an argument so
    one-off codes (USER_NOT_FOUND, ROLE_ALREADY_EXISTS, ...) need no class.
    """

    error_type: ErrorType = ErrorType.INTERNAL_SERVER_ERROR

    def __init__(self, error_type: ErrorType | None = None, detail: str | None = None) -> None:
        if error_type is not None:
            self.error_type = error_type
        self.detail = detail
        super().__init__(detail or self.error_type.value)

    @property
    def code(self) -> str:
        return self.error_type.value

    @property
    def status_code(self) -> int:
        return ERROR_MAP[self.error_type][0]

    @property
    def message(self) -> str:
        return ERROR_MAP[self.error_type][1]


class InvalidTokenError(AppError):
    """Signature check failed, payload malformed, or token kind mismatch."""

    error_type = ErrorType.INVALID_TOKEN


class InvalidTokenTypeError(AppError):
    """Decoded action differs from the action the caller is verifying."""

    error_type = ErrorType.INVALID_TOKEN_TYPE


class InvalidAccessError(AppError):
    """No stored record matches the presented token."""

    error_type = ErrorType.INVALID_ACCESS


class TokenExpiredError(AppError):
    """Stored record is already used or past its expiry time."""

    error_type = ErrorType.TOKEN_EXPIRED


class TokenSignatureExpiredError(AppError):
    """The JWT's own exp claim has elapsed."""

    error_type = ErrorType.TOKEN_SIGNATURE_EXPIRED
