"""
Sign-in state machine shared by the JSON API and the server-rendered pages.

password -> (email OTP | TOTP challenge | phone code) -> /passwords

Every step either returns an AuthStep describing where the user goes next
or raises AuthFlowError carrying the message to surface. Nothing is retried.
"""
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from core import config
from core.config import logger
from core.auth import create_session, destroy_session
from core.identity import IdentityError
from models.auth_session import AuthSession
from models.credential import Credential
from models.mfa import MFAFactor, MFAChallenge
from models.user_security import EmailOTPCode, PhoneNumber, mask_phone
from utils import emailing, mfa, sms
from utils.rate_limit import is_rate_limited, login_throttle, password_reset_throttle, otp_send_throttle
from utils.validation import (
    validate_email,
    validate_password,
    validate_phone_number,
    validate_otp_code,
    normalize_phone,
)

ROUTE_HOME = "/"
ROUTE_AUTH = "/auth"
ROUTE_VERIFY = "/verify-otp"
ROUTE_PASSWORDS = "/passwords"
ROUTE_RESET = "/reset-password"
ROUTE_UPDATE = "/update-password"


class AuthFlowError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class AuthStep:
    next: str
    title: str
    message: str
    session: Optional[AuthSession] = None
    factor: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        out = {"ok": True, "next": self.next, "title": self.title, "message": self.message}
        if self.factor:
            out["factor"] = self.factor
        if self.session is not None:
            out["session_token"] = self.session.token
            out["session"] = self.session.to_dict()
        out.update(self.extra)
        return out


def _mark_verified(db: Session, sess: AuthSession) -> None:
    sess.otp_verified = True
    sess.pending_factor = None
    sess.pending_phone = None
    db.commit()


def _require_session(sess: Optional[AuthSession]) -> AuthSession:
    if not sess:
        raise AuthFlowError("Missing email information. Please log in again.", 401)
    return sess


# ---- Sign up / sign in ----

async def sign_up(identity, email: str, password: str) -> AuthStep:
    email = (email or "").strip().lower()
    ok, err = validate_email(email)
    if not ok:
        raise AuthFlowError(err)
    ok, err = validate_password(password)
    if not ok:
        raise AuthFlowError(err)
    try:
        user = await identity.sign_up(email, password)
    except IdentityError as ex:
        raise AuthFlowError(ex.message, ex.status_code)
    logger.info(f"[auth.signup] created {user.uid}")
    return AuthStep(
        next=ROUTE_AUTH,
        title="Success",
        message="Account created successfully. Please verify your email.",
    )


async def sign_in(db: Session, identity, email: str, password: str, client_ip: str = "unknown") -> AuthStep:
    email = (email or "").strip().lower()
    if not email or not password:
        raise AuthFlowError("Email and password are required")

    if is_rate_limited(login_throttle, f"signin:{client_ip}"):
        logger.warning(f"[auth.signin] rate limited IP {client_ip}")
        raise AuthFlowError("Too many sign-in attempts. Please try again later.", 429)

    try:
        user = await identity.sign_in_with_password(email, password)
    except IdentityError as ex:
        raise AuthFlowError(ex.message, ex.status_code)

    if not user.email_verified:
        logger.info(f"[auth.signin] unconfirmed email for {user.uid}")
        raise AuthFlowError("Email not confirmed")

    if config.SECOND_FACTOR == "none":
        sess = create_session(db, user.uid, user.email or email, otp_verified=True)
        return AuthStep(next=ROUTE_PASSWORDS, title="Success", message="Signed in successfully", session=sess)

    sess = create_session(db, user.uid, user.email or email)
    try:
        return start_second_factor(db, sess)
    except AuthFlowError:
        # A half-open session would strand the user on /verify-otp
        destroy_session(db, sess.token)
        raise


def start_second_factor(db: Session, sess: AuthSession) -> AuthStep:
    factor = config.SECOND_FACTOR

    if factor == "email":
        sess.pending_factor = "email"
        db.commit()
        issue_email_otp(db, sess)
        return AuthStep(
            next=ROUTE_VERIFY,
            title="Verification code sent",
            message="Please check your email for the verification code",
            session=sess,
            factor="email",
        )

    if factor == "totp":
        if mfa.get_verified_totp_factor(db, sess.uid):
            sess.pending_factor = "totp"
            db.commit()
            return AuthStep(
                next=ROUTE_VERIFY,
                title="Two-factor authentication",
                message="Enter the code from your authenticator app",
                session=sess,
                factor="totp",
            )
        sess.pending_factor = "totp_enroll"
        db.commit()
        return AuthStep(
            next=ROUTE_VERIFY,
            title="Setup Two-Factor Authentication",
            message="Scan the QR code with your authenticator app to continue",
            session=sess,
            factor="totp_enroll",
        )

    if factor == "phone":
        phone = db.query(PhoneNumber).filter(PhoneNumber.uid == sess.uid, PhoneNumber.verified == True).first()  # noqa: E712
        if phone:
            sess.pending_factor = "phone"
            sess.pending_phone = phone.phone_number
            db.commit()
            step = send_phone_code(db, sess)
            step.factor = "phone"
            return step
        sess.pending_factor = "phone_enroll"
        db.commit()
        return AuthStep(
            next=ROUTE_VERIFY,
            title="Verify your phone",
            message="Add a phone number to continue",
            session=sess,
            factor="phone_enroll",
        )

    _mark_verified(db, sess)
    return AuthStep(next=ROUTE_PASSWORDS, title="Success", message="Signed in successfully", session=sess)


# ---- Email OTP ----

def issue_email_otp(db: Session, sess: AuthSession) -> None:
    if is_rate_limited(otp_send_throttle, f"otp:{sess.uid}"):
        raise AuthFlowError("Too many codes requested. Please try again later.", 429)

    # Only the newest code is valid
    db.query(EmailOTPCode).filter(
        EmailOTPCode.uid == sess.uid,
        EmailOTPCode.purpose == "login",
        EmailOTPCode.used == False,  # noqa: E712
    ).update({"used": True})

    code = f"{secrets.randbelow(1_000_000):06d}"
    now = datetime.utcnow()
    rec = EmailOTPCode(
        uid=sess.uid,
        email=sess.email,
        code=code,
        purpose="login",
        expires_at=now + timedelta(minutes=config.OTP_TTL_MINUTES),
        max_attempts=config.OTP_MAX_ATTEMPTS,
        created_at=now,
    )
    db.add(rec)
    db.commit()

    if not emailing.smtp_configured():
        # For development/testing, log the code
        logger.info(f"Email OTP for {sess.email}: {code} (SMTP not configured)")
        return

    html = emailing.render_email(
        "email_basic.html",
        title="Your verification code",
        intro=f"Your sign-in code is: <strong style='font-size:24px; letter-spacing:4px;'>{code}</strong>",
        footer_note=f"This code will expire in {config.OTP_TTL_MINUTES} minutes. If you did not try to sign in, change your password.",
    )
    text = f"Your sign-in code is: {code}\n\nThis code will expire in {config.OTP_TTL_MINUTES} minutes."
    if not emailing.send_email_smtp(sess.email, "Your verification code", html, text):
        raise AuthFlowError("Failed to send verification email", 500)


def verify_email_otp(db: Session, sess: Optional[AuthSession], code: str) -> AuthStep:
    sess = _require_session(sess)
    if sess.otp_verified:
        return AuthStep(next=ROUTE_PASSWORDS, title="Success", message="Email verified successfully", session=sess)
    if sess.pending_factor != "email":
        raise AuthFlowError("No email verification pending")

    code = (code or "").strip()
    ok, err = validate_otp_code(code)
    if not ok:
        raise AuthFlowError(err)

    rec = db.query(EmailOTPCode).filter(
        EmailOTPCode.uid == sess.uid,
        EmailOTPCode.purpose == "login",
        EmailOTPCode.used == False,  # noqa: E712
    ).order_by(EmailOTPCode.created_at.desc(), EmailOTPCode.id.desc()).first()

    if not rec:
        raise AuthFlowError("Token has expired or is invalid")

    if datetime.utcnow() > rec.expires_at.replace(tzinfo=None):
        rec.used = True
        db.commit()
        raise AuthFlowError("Verification code has expired. Please request a new one.", 410)

    if not secrets.compare_digest(rec.code, code):
        rec.attempts = int(rec.attempts or 0) + 1
        if rec.attempts >= int(rec.max_attempts or config.OTP_MAX_ATTEMPTS):
            rec.used = True
            db.commit()
            raise AuthFlowError("Too many invalid attempts. Please request a new code.", 429)
        db.commit()
        raise AuthFlowError("Verification code is incorrect")

    rec.used = True
    _mark_verified(db, sess)
    logger.info(f"[auth.otp] email verified for {sess.uid}")
    return AuthStep(next=ROUTE_PASSWORDS, title="Success", message="Email verified successfully", session=sess)


def resend_email_otp(db: Session, sess: Optional[AuthSession]) -> AuthStep:
    sess = _require_session(sess)
    if sess.pending_factor != "email":
        raise AuthFlowError("No email verification pending")
    issue_email_otp(db, sess)
    return AuthStep(
        next=ROUTE_VERIFY,
        title="Verification code sent",
        message="Please check your email for the verification code",
        session=sess,
        factor="email",
    )


# ---- TOTP ----

def _require_totp_step(sess: Optional[AuthSession]) -> AuthSession:
    sess = _require_session(sess)
    if not sess.otp_verified and sess.pending_factor not in ("totp", "totp_enroll"):
        raise AuthFlowError("Two-factor authentication is not pending for this session", 403)
    return sess


def totp_enroll(db: Session, sess: Optional[AuthSession], friendly_name: Optional[str] = None) -> dict:
    sess = _require_totp_step(sess)
    if not sess.otp_verified and sess.pending_factor == "totp":
        raise AuthFlowError("A verified authenticator is already registered", 400)
    return mfa.enroll_totp(db, sess.uid, sess.email, friendly_name)


def totp_challenge(db: Session, sess: Optional[AuthSession], factor_id: Optional[str] = None) -> MFAChallenge:
    sess = _require_totp_step(sess)
    if not factor_id:
        factor = mfa.get_verified_totp_factor(db, sess.uid) or mfa.get_pending_totp_factor(db, sess.uid)
        if not factor:
            raise AuthFlowError("No authenticator enrolled", 400)
        factor_id = factor.id
    try:
        return mfa.create_challenge(db, sess.uid, factor_id)
    except mfa.MFAError as ex:
        raise AuthFlowError(ex.message, ex.status_code)


def totp_verify(db: Session, sess: Optional[AuthSession], factor_id: str, challenge_id: str, code: str) -> AuthStep:
    sess = _require_totp_step(sess)
    before = db.query(MFAFactor).filter(MFAFactor.id == factor_id, MFAFactor.uid == sess.uid).first()
    newly_enrolled = bool(before and before.status != "verified")
    try:
        factor = mfa.verify_challenge(db, sess.uid, factor_id, challenge_id, code)
    except mfa.MFAError as ex:
        raise AuthFlowError(ex.message, ex.status_code)
    _mark_verified(db, sess)
    message = "TOTP setup completed successfully!" if newly_enrolled else "Two-factor authentication verified"
    return AuthStep(
        next=ROUTE_PASSWORDS,
        title="Success",
        message=message,
        session=sess,
        factor="totp",
        extra={"factor_id": factor.id},
    )


def totp_challenge_and_verify(db: Session, sess: Optional[AuthSession], code: str) -> AuthStep:
    """Single-submit variant used by the pages: challenge the current factor and verify it."""
    if not (code or "").strip():
        raise AuthFlowError("Please enter the verification code")
    challenge = totp_challenge(db, sess)
    return totp_verify(db, sess, challenge.factor_id, challenge.id, code)


# ---- Phone ----

def _require_phone_step(sess: Optional[AuthSession]) -> AuthSession:
    sess = _require_session(sess)
    if not sess.otp_verified and sess.pending_factor not in ("phone", "phone_enroll"):
        raise AuthFlowError("Phone verification is not pending for this session", 403)
    return sess


def send_phone_code(db: Session, sess: Optional[AuthSession], phone: Optional[str] = None) -> AuthStep:
    sess = _require_phone_step(sess)
    if phone:
        ok, err = validate_phone_number(phone)
        if not ok:
            raise AuthFlowError(err)
        if not sess.otp_verified and sess.pending_factor == "phone":
            raise AuthFlowError("Use the phone number already registered on this account")
        sess.pending_phone = normalize_phone(phone)
        db.commit()
    if not sess.pending_phone:
        raise AuthFlowError("Phone number required")

    if is_rate_limited(otp_send_throttle, f"otp:{sess.uid}"):
        raise AuthFlowError("Too many codes requested. Please try again later.", 429)

    try:
        status = sms.send_verification(sess.pending_phone)
    except sms.SMSError as ex:
        raise AuthFlowError(str(ex))

    return AuthStep(
        next=ROUTE_VERIFY,
        title="Verification code sent",
        message=f"We sent a code to {mask_phone(sess.pending_phone)}",
        session=sess,
        factor=sess.pending_factor or "phone",
        extra={"status": status},
    )


def verify_phone_code(db: Session, sess: Optional[AuthSession], code: str) -> AuthStep:
    sess = _require_phone_step(sess)
    if not sess.pending_phone:
        raise AuthFlowError("Request a verification code first")
    code = (code or "").strip()
    if not code:
        raise AuthFlowError("Please enter the verification code")

    try:
        status, valid = sms.check_verification(sess.pending_phone, code)
    except sms.SMSError as ex:
        raise AuthFlowError(str(ex))
    if not valid or status != "approved":
        raise AuthFlowError("Invalid verification code")

    now = datetime.utcnow()
    rec = db.query(PhoneNumber).filter(PhoneNumber.uid == sess.uid).first()
    if rec:
        rec.phone_number = sess.pending_phone
        rec.verified = True
        rec.verified_at = now
    else:
        db.add(PhoneNumber(uid=sess.uid, phone_number=sess.pending_phone, verified=True, verified_at=now))
    _mark_verified(db, sess)
    return AuthStep(
        next=ROUTE_PASSWORDS,
        title="Success",
        message="Phone number verified successfully",
        session=sess,
        factor="phone",
    )


# ---- Password reset / update ----

async def request_password_reset(identity, email: str) -> AuthStep:
    email = (email or "").strip().lower()
    ok, err = validate_email(email)
    if not ok:
        raise AuthFlowError(err)

    if is_rate_limited(password_reset_throttle, f"pw_reset:{email}"):
        logger.warning(f"[auth.password_reset] rate limited for {email}")
        raise AuthFlowError("Too many requests. Please try again later.", 429)

    try:
        await identity.send_password_reset(email, continue_url=f"{config.FRONTEND_ORIGIN}{ROUTE_UPDATE}")
    except IdentityError as ex:
        # Unknown addresses look like success to prevent email enumeration
        if ex.code != "EMAIL_NOT_FOUND":
            raise AuthFlowError(ex.message, ex.status_code)
        logger.info(f"[auth.password_reset] email not found (hidden): {email}")

    return AuthStep(
        next=ROUTE_RESET,
        title="Reset link sent",
        message="Check your email for a password reset link",
    )


async def update_password(identity, password: str, confirm_password: Optional[str],
                          oob_code: Optional[str] = None, sess: Optional[AuthSession] = None) -> AuthStep:
    ok, err = validate_password(password, confirm_password)
    if not ok:
        raise AuthFlowError(err)

    try:
        if oob_code:
            await identity.confirm_password_reset(oob_code, password)
        elif sess and sess.otp_verified:
            identity.update_password(sess.uid, password)
        else:
            raise AuthFlowError("Please use the password reset link sent to your email", 401)
    except IdentityError as ex:
        raise AuthFlowError(ex.message, ex.status_code)

    return AuthStep(
        next=ROUTE_AUTH,
        title="Password updated",
        message="Your password has been updated successfully",
    )


# ---- Sign out / delete ----

def sign_out(db: Session, token: Optional[str]) -> AuthStep:
    destroy_session(db, token)
    return AuthStep(next=ROUTE_HOME, title="Success", message="Logged out successfully")


def delete_account(db: Session, identity, sess: Optional[AuthSession]) -> AuthStep:
    """
    Remove everything stored for the user, then the identity-provider account.
    Local deletions are only committed once the provider deletion succeeded.
    """
    if not sess or not sess.otp_verified:
        raise AuthFlowError("Unauthorized", 401)
    uid = sess.uid
    try:
        db.query(Credential).filter(Credential.owner_uid == uid).delete()
        db.query(MFAChallenge).filter(MFAChallenge.uid == uid).delete()
        db.query(MFAFactor).filter(MFAFactor.uid == uid).delete()
        db.query(EmailOTPCode).filter(EmailOTPCode.uid == uid).delete()
        db.query(PhoneNumber).filter(PhoneNumber.uid == uid).delete()
        db.query(AuthSession).filter(AuthSession.uid == uid).delete()
        db.flush()
        identity.delete_user(uid)
        db.commit()
    except IdentityError as ex:
        db.rollback()
        raise AuthFlowError(ex.message, ex.status_code)
    except Exception:
        db.rollback()
        raise
    logger.info(f"[account.delete] deleted {uid}")
    return AuthStep(next=ROUTE_HOME, title="Account deleted", message="Your account has been deleted")
