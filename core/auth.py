import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import Session

from core.config import logger, SESSION_TTL_HOURS, SESSION_COOKIE_NAME, SESSION_COOKIE_SECURE
from models.auth_session import AuthSession


def get_token_from_request(request: Request) -> Optional[str]:
    """Bearer token from the Authorization header, else the session cookie."""
    auth_header = request.headers.get("authorization") or request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        if token:
            return token
    token = (request.cookies.get(SESSION_COOKIE_NAME) or "").strip()
    return token or None


def create_session(db: Session, uid: str, email: str, otp_verified: bool = False,
                   pending_factor: Optional[str] = None) -> AuthSession:
    now = datetime.utcnow()
    sess = AuthSession(
        token=secrets.token_urlsafe(32),
        uid=uid,
        email=(email or "").lower(),
        otp_verified=otp_verified,
        pending_factor=pending_factor,
        created_at=now,
        last_seen_at=now,
        expires_at=now + timedelta(hours=SESSION_TTL_HOURS),
    )
    db.add(sess)
    db.commit()
    return sess


def lookup_session(db: Session, token: Optional[str]) -> Optional[AuthSession]:
    if not token:
        return None
    sess = db.query(AuthSession).filter(AuthSession.token == token).first()
    if not sess:
        return None
    now = datetime.utcnow()
    if sess.expires_at and now > sess.expires_at.replace(tzinfo=None):
        try:
            db.delete(sess)
            db.commit()
        except Exception as ex:
            db.rollback()
            logger.warning(f"[auth] failed to drop expired session: {ex}")
        return None
    sess.last_seen_at = now
    db.commit()
    return sess


def get_session_from_request(request: Request, db: Session) -> Optional[AuthSession]:
    return lookup_session(db, get_token_from_request(request))


def get_uid_from_request(request: Request, db: Session, require_verified: bool = True) -> Optional[str]:
    """UID of the caller, or None when there is no live session (or the gate is still closed)."""
    sess = get_session_from_request(request, db)
    if not sess:
        return None
    if require_verified and not sess.otp_verified:
        return None
    return sess.uid


def destroy_session(db: Session, token: Optional[str]) -> bool:
    if not token:
        return False
    deleted = db.query(AuthSession).filter(AuthSession.token == token).delete()
    db.commit()
    return bool(deleted)


def set_session_cookie(response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=SESSION_TTL_HOURS * 3600,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")


def client_ip(request: Request) -> str:
    # Behind a proxy the first X-Forwarded-For hop is the client
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
