"""
Multi-factor authentication factors and challenges (TOTP)
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime
from core.database import Base


class MFAFactor(Base):
    __tablename__ = "mfa_factors"

    id = Column(String(36), primary_key=True)  # uuid4
    uid = Column(String(128), index=True, nullable=False)

    factor_type = Column(String(20), default="totp", nullable=False)
    friendly_name = Column(String(255), nullable=True)
    secret = Column(String(64), nullable=False)
    status = Column(String(20), default="unverified", nullable=False)  # 'unverified', 'verified'

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self):
        """Convert to dict for API responses (excludes the secret)"""
        return {
            "id": self.id,
            "factor_type": self.factor_type,
            "friendly_name": self.friendly_name,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class MFAChallenge(Base):
    __tablename__ = "mfa_challenges"

    id = Column(String(36), primary_key=True)  # uuid4
    factor_id = Column(String(36), index=True, nullable=False)
    uid = Column(String(128), index=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
