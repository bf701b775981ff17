"""
Server-side sessions issued after a successful password sign-in
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean
from core.database import Base


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    # Opaque bearer/cookie token
    token = Column(String(64), primary_key=True, index=True)

    uid = Column(String(128), index=True, nullable=False)
    email = Column(String(255), nullable=False)

    # Gate for protected routes; flipped once the second factor passes
    otp_verified = Column(Boolean, default=False, nullable=False)
    pending_factor = Column(String(20), nullable=True)  # 'email', 'totp', 'totp_enroll', 'phone', 'phone_enroll'
    pending_phone = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    last_seen_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    def to_dict(self):
        return {
            "authenticated": True,
            "uid": self.uid,
            "email": self.email,
            "otp_verified": bool(self.otp_verified),
            "pending_factor": self.pending_factor,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
