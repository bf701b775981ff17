from typing import List, Optional, Tuple

from fastapi import APIRouter, Request, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.auth import get_session_from_request
from core.config import logger
from core.database import get_db
from models.credential import Credential
from utils.crypto import encrypt_password, decrypt_password, DecryptionError
from utils.validation import normalize_username, validate_credential

router = APIRouter(prefix="/api", tags=["credentials"])


class CredentialError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _serialize(row: Credential) -> dict:
    try:
        password = decrypt_password(row.encrypted_password, row.owner_uid)
    except DecryptionError:
        logger.warning(f"[credentials] could not decrypt row {row.id}")
        password = None
    return row.to_dict(password=password)


def list_credentials(db: Session, uid: str) -> List[dict]:
    """All credentials of one user, newest first."""
    rows = (
        db.query(Credential)
        .filter(Credential.owner_uid == uid)
        .order_by(Credential.created_at.desc(), Credential.id.desc())
        .all()
    )
    return [_serialize(r) for r in rows]


def create_credential(db: Session, uid: str, website_url: str, username, password: str) -> dict:
    website_url = (website_url or "").strip()
    username = normalize_username(username)
    ok, err = validate_credential(website_url, username, password or "")
    if not ok:
        raise CredentialError(err)
    row = Credential(
        owner_uid=uid,
        website_url=website_url,
        username=username,
        encrypted_password=encrypt_password(password, uid),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info(f"[credentials] created {row.id} for {uid}")
    return row.to_dict(password=password)


def delete_credential(db: Session, uid: str, credential_id: int) -> None:
    row = db.query(Credential).filter(Credential.id == credential_id, Credential.owner_uid == uid).first()
    if not row:
        raise CredentialError("Credential not found", status_code=404)
    db.delete(row)
    db.commit()
    logger.info(f"[credentials] deleted {credential_id} for {uid}")


def _require_verified(request: Request, db: Session) -> Tuple[Optional[str], Optional[JSONResponse]]:
    sess = get_session_from_request(request, db)
    if not sess:
        return None, JSONResponse({"error": "Unauthorized"}, status_code=401)
    if not sess.otp_verified:
        return None, JSONResponse({"error": "Verification required"}, status_code=403)
    return sess.uid, None


@router.get("/credentials")
async def credentials_list(request: Request, db: Session = Depends(get_db)):
    uid, denied = _require_verified(request, db)
    if denied:
        return denied
    try:
        return {"credentials": list_credentials(db, uid)}
    except Exception as ex:
        logger.exception(f"[credentials] list failed for {uid}: {ex}")
        return JSONResponse({"error": "Failed to load credentials"}, status_code=500)


@router.post("/credentials")
async def credentials_create(request: Request, payload: dict = Body(...), db: Session = Depends(get_db)):
    """
    Body: { "website_url": str, "username": str | [str], "password": str }
    """
    uid, denied = _require_verified(request, db)
    if denied:
        return denied
    try:
        created = create_credential(
            db, uid,
            payload.get("website_url") or payload.get("websiteUrl") or "",
            payload.get("username"),
            payload.get("password") or "",
        )
        return JSONResponse(created, status_code=201)
    except CredentialError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        db.rollback()
        logger.exception(f"[credentials] create failed for {uid}: {ex}")
        return JSONResponse({"error": "Failed to save credential"}, status_code=500)


@router.delete("/credentials/{credential_id}")
async def credentials_delete(credential_id: int, request: Request, db: Session = Depends(get_db)):
    uid, denied = _require_verified(request, db)
    if denied:
        return denied
    try:
        delete_credential(db, uid, credential_id)
        return {"ok": True, "id": credential_id}
    except CredentialError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        db.rollback()
        logger.exception(f"[credentials] delete failed for {uid}: {ex}")
        return JSONResponse({"error": "Failed to delete credential"}, status_code=500)
