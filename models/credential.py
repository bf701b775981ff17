"""
Stored website credentials
Passwords are kept Fernet-encrypted; see utils/crypto.py
"""
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer
from core.database import Base


class Credential(Base):
    __tablename__ = "credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identity provider UID of the owner
    owner_uid = Column(String(128), index=True, nullable=False)

    website_url = Column(Text, nullable=False)
    username = Column(String(255), nullable=False)
    encrypted_password = Column(Text, nullable=False)

    # Timestamps (set in Python so ordering has sub-second resolution)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self, password: str = None):
        """Convert to dict for API responses. The caller supplies the decrypted password."""
        return {
            "id": self.id,
            "websiteUrl": self.website_url,
            "username": self.username,
            "password": password,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
