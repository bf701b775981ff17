"""
Validation utilities for user input (emails, passwords, phone numbers, credentials)
"""
import re
import dns.resolver
from typing import Tuple, Union, List, Optional

from core.config import MIN_PASSWORD_LENGTH

_EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
_E164_RE = re.compile(r'^\+[1-9]\d{7,14}$')
_OTP_RE = re.compile(r'^[0-9]{6}$')


def validate_email(email: str) -> Tuple[bool, str]:
    """
    Validate email address format.
    Returns (is_valid, error_message).
    """
    trimmed = (email or "").strip().lower()

    if not trimmed:
        return False, "Email is required"

    if not _EMAIL_RE.match(trimmed):
        return False, "Invalid email format"

    return True, ""


def validate_email_mx(email: str) -> Tuple[bool, str]:
    """
    Validate email domain has valid MX records.
    Returns (is_valid, error_message).
    """
    trimmed = (email or "").strip().lower()

    if not trimmed or '@' not in trimmed:
        return False, "Invalid email format"

    domain = trimmed.split('@')[-1]

    try:
        mx_records = dns.resolver.resolve(domain, 'MX')
        if not mx_records:
            return False, f"No mail server found for domain '{domain}'"
        return True, ""
    except dns.resolver.NXDOMAIN:
        return False, f"Domain '{domain}' does not exist"
    except dns.resolver.NoAnswer:
        return False, f"No mail server configured for '{domain}'"
    except dns.resolver.Timeout:
        # Don't fail on timeout - could be network issue
        return True, ""
    except Exception:
        # Don't fail on other DNS errors - could be temporary
        return True, ""


def validate_password(password: str, confirm: Optional[str] = None) -> Tuple[bool, str]:
    """
    Validate a new password and, when given, its confirmation.
    Returns (is_valid, error_message).
    """
    if not password:
        return False, "Password is required"
    if confirm is not None and password != confirm:
        return False, "Passwords don't match"
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    return True, ""


def normalize_phone(phone: str) -> str:
    """Strip spaces, dashes and parentheses; keep a leading '+'."""
    raw = (phone or "").strip()
    digits = ''.join(c for c in raw if c.isdigit())
    return f"+{digits}" if raw.startswith("+") else digits


def validate_phone_number(phone: str) -> Tuple[bool, str]:
    """
    Validate an E.164 phone number (e.g. +14155552671).
    Returns (is_valid, error_message).
    """
    if not phone:
        return False, "Phone number required"
    if not _E164_RE.match(normalize_phone(phone)):
        return False, "Invalid phone number. Use international format, e.g. +14155552671"
    return True, ""


def validate_otp_code(code: str) -> Tuple[bool, str]:
    if not code:
        return False, "Please enter the verification code"
    if not _OTP_RE.match(code.strip()):
        return False, "Invalid code format"
    return True, ""


def normalize_username(username: Union[str, List[str], None]) -> str:
    """
    Usernames may arrive as a plain string or as a single-element list
    (older clients stored them as ["user@example.com"]).
    """
    if isinstance(username, (list, tuple)):
        username = username[0] if username else ""
    return str(username or "").strip()


def validate_credential(website_url: str, username: str, password: str) -> Tuple[bool, str]:
    if not (website_url or "").strip():
        return False, "Website URL is required"
    if not (username or "").strip():
        return False, "Username/Email is required"
    if not password:
        return False, "Password is required"
    if len(website_url) > 2048:
        return False, "Website URL is too long"
    if len(username) > 255:
        return False, "Username/Email is too long"
    return True, ""
