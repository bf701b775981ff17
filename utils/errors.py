"""Friendly text for error codes returned by the identity provider."""

from __future__ import annotations

from typing import Optional

# Provider code -> message shown to the user. Unknown codes are shown verbatim.
_PROVIDER_MESSAGES: dict[str, str] = {
    "INVALID_LOGIN_CREDENTIALS": "Invalid login credentials",
    "INVALID_PASSWORD": "Invalid login credentials",
    "EMAIL_NOT_FOUND": "Invalid login credentials",
    "USER_DISABLED": "This account has been disabled",
    "EMAIL_EXISTS": "User already registered",
    "WEAK_PASSWORD": "Password should be at least 6 characters",
    "INVALID_EMAIL": "Unable to validate email address: invalid format",
    "MISSING_PASSWORD": "Password is required",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts. Please try again later.",
    "EXPIRED_OOB_CODE": "Password reset link has expired. Please request a new one.",
    "INVALID_OOB_CODE": "Password reset link is invalid or has already been used",
    "OPERATION_NOT_ALLOWED": "Password sign-in is disabled for this project",
    "USER_NOT_FOUND": "User not found",
}


def provider_code(message: Optional[str]) -> str:
    """Extract the bare code from messages like 'WEAK_PASSWORD : Password should be ...'."""
    if not message:
        return ""
    return message.split(" : ", 1)[0].strip()


def friendly_message(code_or_message: Optional[str]) -> str:
    """Map a provider code to friendly text; fall back to the text as given."""
    if not code_or_message:
        return "Unknown error"
    code = provider_code(code_or_message)
    return _PROVIDER_MESSAGES.get(code, code_or_message)
