"""
User security models
Email one-time passcodes and verified phone numbers
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Boolean
from core.database import Base


def mask_phone(phone: str) -> str:
    """Mask phone number for display"""
    if not phone or len(phone) < 7:
        return "****"
    return phone[:3] + "****" + phone[-4:]


class EmailOTPCode(Base):
    """
    Stores temporary email verification codes
    """
    __tablename__ = "email_otp_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # User identification
    uid = Column(String(128), index=True, nullable=False)
    email = Column(String(255), index=True, nullable=False)

    # Verification code
    code = Column(String(10), nullable=False)

    # Purpose
    purpose = Column(String(30), default="login")

    # Expiration
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Usage tracking
    attempts = Column(Integer, default=0)
    max_attempts = Column(Integer, default=5)
    used = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class PhoneNumber(Base):
    """
    Phone number verified through the SMS verify provider, one per user
    """
    __tablename__ = "phone_numbers"

    uid = Column(String(128), primary_key=True, index=True)
    phone_number = Column(String(20), nullable=False)
    verified = Column(Boolean, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "phoneNumber": mask_phone(self.phone_number) if self.phone_number else None,
            "verified": bool(self.verified),
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
        }
