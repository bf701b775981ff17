"""
Initialize the database schema
Creates all tables defined in models and drops expired sessions / codes
"""
import sys
import os
from datetime import datetime

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import Base, engine, SessionLocal
from models.auth_session import AuthSession
from models.credential import Credential  # noqa: F401
from models.mfa import MFAFactor, MFAChallenge  # noqa: F401
from models.user_security import EmailOTPCode, PhoneNumber  # noqa: F401


def init_database():
    """Create all tables in the database"""
    print("Creating tables...")

    try:
        Base.metadata.create_all(bind=engine)
        print("✓ Tables created successfully!")
        print("\nTables:")
        for name in sorted(Base.metadata.tables):
            print(f"  - {name}")
    except Exception as e:
        print(f"✗ Error creating tables: {e}")
        sys.exit(1)


def purge_expired():
    """Remove expired sessions, OTP codes and MFA challenges"""
    now = datetime.utcnow()
    db = SessionLocal()
    try:
        sessions = db.query(AuthSession).filter(AuthSession.expires_at < now).delete()
        codes = db.query(EmailOTPCode).filter(EmailOTPCode.expires_at < now).delete()
        challenges = db.query(MFAChallenge).filter(MFAChallenge.expires_at < now).delete()
        db.commit()
        print(f"✓ Purged {sessions} sessions, {codes} codes, {challenges} challenges")
    except Exception as e:
        db.rollback()
        print(f"✗ Error purging expired rows: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
    if "--purge-expired" in sys.argv[1:]:
        purge_expired()
