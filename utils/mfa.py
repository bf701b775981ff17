"""
TOTP factor enrollment, challenge and verification
"""
import io
import uuid
import base64
from datetime import datetime, timedelta
from typing import Optional

import pyotp
import qrcode
from sqlalchemy.orm import Session

from core import config
from core.config import logger
from models.mfa import MFAFactor, MFAChallenge
from utils.validation import validate_otp_code


class MFAError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _qr_data_url(uri: str) -> str:
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(uri)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    qr_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    return f"data:image/png;base64,{qr_base64}"


def list_factors(db: Session, uid: str):
    return db.query(MFAFactor).filter(MFAFactor.uid == uid).order_by(MFAFactor.created_at.asc()).all()


def get_verified_totp_factor(db: Session, uid: str) -> Optional[MFAFactor]:
    return db.query(MFAFactor).filter(
        MFAFactor.uid == uid,
        MFAFactor.factor_type == "totp",
        MFAFactor.status == "verified",
    ).order_by(MFAFactor.created_at.desc()).first()


def get_pending_totp_factor(db: Session, uid: str) -> Optional[MFAFactor]:
    return db.query(MFAFactor).filter(
        MFAFactor.uid == uid,
        MFAFactor.factor_type == "totp",
        MFAFactor.status == "unverified",
    ).order_by(MFAFactor.created_at.desc()).first()


def enroll_totp(db: Session, uid: str, email: str, friendly_name: Optional[str] = None) -> dict:
    """
    Create an unverified TOTP factor.
    Returns: { id, type, totp: { qr_code, secret, uri } }
    """
    # Only one enrollment may be in flight
    db.query(MFAFactor).filter(
        MFAFactor.uid == uid,
        MFAFactor.factor_type == "totp",
        MFAFactor.status == "unverified",
    ).delete()

    secret = pyotp.random_base32()
    factor = MFAFactor(
        id=str(uuid.uuid4()),
        uid=uid,
        factor_type="totp",
        friendly_name=(friendly_name or "").strip() or None,
        secret=secret,
        status="unverified",
    )
    db.add(factor)
    db.commit()
    return describe_enrollment(factor, email)


def describe_enrollment(factor: MFAFactor, email: str) -> dict:
    uri = pyotp.TOTP(factor.secret).provisioning_uri(name=email or factor.uid, issuer_name=config.APP_NAME)
    return {
        "id": factor.id,
        "type": "totp",
        "totp": {
            "qr_code": _qr_data_url(uri),
            "secret": factor.secret,
            "uri": uri,
        },
    }


def create_challenge(db: Session, uid: str, factor_id: str) -> MFAChallenge:
    factor = db.query(MFAFactor).filter(MFAFactor.id == factor_id, MFAFactor.uid == uid).first()
    if not factor:
        raise MFAError("Factor not found", status_code=404)
    now = datetime.utcnow()
    challenge = MFAChallenge(
        id=str(uuid.uuid4()),
        factor_id=factor.id,
        uid=uid,
        created_at=now,
        expires_at=now + timedelta(seconds=config.MFA_CHALLENGE_TTL_SECONDS),
    )
    db.add(challenge)
    db.commit()
    return challenge


def verify_challenge(db: Session, uid: str, factor_id: str, challenge_id: str, code: str) -> MFAFactor:
    """
    Check a TOTP code against a challenge. On success the challenge is consumed
    and the factor is marked verified.
    """
    factor = db.query(MFAFactor).filter(MFAFactor.id == factor_id, MFAFactor.uid == uid).first()
    if not factor:
        raise MFAError("Factor not found", status_code=404)

    challenge = db.query(MFAChallenge).filter(
        MFAChallenge.id == challenge_id,
        MFAChallenge.factor_id == factor.id,
    ).first()
    if not challenge:
        raise MFAError("Challenge not found", status_code=404)
    if challenge.verified_at is not None:
        raise MFAError("Challenge has already been used", status_code=400)
    if datetime.utcnow() > challenge.expires_at.replace(tzinfo=None):
        raise MFAError("Challenge has expired. Please try again.", status_code=410)

    code = (code or "").strip()
    ok, err = validate_otp_code(code)
    if not ok:
        raise MFAError(err, status_code=400)

    totp = pyotp.TOTP(factor.secret)
    if not totp.verify(code, valid_window=1):
        raise MFAError("Invalid TOTP code entered", status_code=400)

    now = datetime.utcnow()
    challenge.verified_at = now
    if factor.status != "verified":
        factor.status = "verified"
        logger.info(f"[mfa] factor {factor.id} verified for {uid}")
    factor.updated_at = now
    db.commit()
    return factor


def unenroll(db: Session, uid: str, factor_id: str) -> None:
    factor = db.query(MFAFactor).filter(MFAFactor.id == factor_id, MFAFactor.uid == uid).first()
    if not factor:
        raise MFAError("Factor not found", status_code=404)
    db.query(MFAChallenge).filter(MFAChallenge.factor_id == factor.id).delete()
    db.delete(factor)
    db.commit()
