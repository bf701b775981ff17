from fastapi import APIRouter, Request, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.auth import get_session_from_request, set_session_cookie
from core.config import logger
from core.database import get_db
from utils import auth_flow, mfa
from utils.auth_flow import AuthFlowError

router = APIRouter(prefix="/api", tags=["mfa"])


# ---- TOTP factors ----

@router.get("/auth/mfa/factors")
async def mfa_list_factors(request: Request, db: Session = Depends(get_db)):
    sess = get_session_from_request(request, db)
    if not sess:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    if not sess.otp_verified:
        return JSONResponse({"error": "Verification required"}, status_code=403)
    factors = mfa.list_factors(db, sess.uid)
    return {"all": [f.to_dict() for f in factors], "totp": [f.to_dict() for f in factors if f.factor_type == "totp"]}


@router.post("/auth/mfa/enroll")
async def mfa_enroll(request: Request, payload: dict = Body(None), db: Session = Depends(get_db)):
    """
    Start TOTP enrollment.
    Body (optional): { "friendly_name": str }
    Returns: { id, type: "totp", totp: { qr_code, secret, uri } }
    """
    try:
        sess = get_session_from_request(request, db)
        return auth_flow.totp_enroll(db, sess, (payload or {}).get("friendly_name"))
    except AuthFlowError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        logger.exception(f"[mfa.enroll] failed: {ex}")
        return JSONResponse({"error": "Failed to initialize TOTP"}, status_code=500)


@router.post("/auth/mfa/challenge")
async def mfa_challenge(request: Request, payload: dict = Body(None), db: Session = Depends(get_db)):
    """Body: { "factor_id"?: str }"""
    try:
        sess = get_session_from_request(request, db)
        challenge = auth_flow.totp_challenge(db, sess, (payload or {}).get("factor_id"))
        return {
            "id": challenge.id,
            "factor_id": challenge.factor_id,
            "expires_at": challenge.expires_at.isoformat(),
        }
    except AuthFlowError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        logger.exception(f"[mfa.challenge] failed: {ex}")
        return JSONResponse({"error": "Failed to create challenge"}, status_code=500)


@router.post("/auth/mfa/verify")
async def mfa_verify(request: Request, payload: dict = Body(...), db: Session = Depends(get_db)):
    """Body: { "factor_id": str, "challenge_id": str, "code": str }"""
    factor_id = (payload.get("factor_id") or "").strip()
    challenge_id = (payload.get("challenge_id") or "").strip()
    if not factor_id or not challenge_id:
        return JSONResponse({"error": "factor_id and challenge_id are required"}, status_code=400)
    try:
        sess = get_session_from_request(request, db)
        step = auth_flow.totp_verify(db, sess, factor_id, challenge_id, str(payload.get("code") or ""))
        resp = JSONResponse(step.to_dict())
        set_session_cookie(resp, step.session.token)
        return resp
    except AuthFlowError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        logger.exception(f"[mfa.verify] failed: {ex}")
        return JSONResponse({"error": "Failed to verify code"}, status_code=500)


@router.delete("/auth/mfa/factors/{factor_id}")
async def mfa_unenroll(factor_id: str, request: Request, db: Session = Depends(get_db)):
    sess = get_session_from_request(request, db)
    if not sess:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    if not sess.otp_verified:
        return JSONResponse({"error": "Verification required"}, status_code=403)
    try:
        mfa.unenroll(db, sess.uid, factor_id)
        logger.info(f"[mfa] factor {factor_id} removed for {sess.uid}")
        return {"ok": True, "id": factor_id}
    except mfa.MFAError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)


# ---- Phone second factor ----

@router.post("/auth/phone/send")
async def phone_send(request: Request, payload: dict = Body(None), db: Session = Depends(get_db)):
    """
    Send an SMS code. A phone number is only needed while enrolling.
    Body (optional): { "phone_number": str }
    """
    try:
        sess = get_session_from_request(request, db)
        step = auth_flow.send_phone_code(db, sess, (payload or {}).get("phone_number"))
        return step.to_dict()
    except AuthFlowError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        logger.exception(f"[auth.phone] send failed: {ex}")
        return JSONResponse({"error": "Failed to send SMS"}, status_code=500)


@router.post("/auth/phone/verify")
async def phone_verify(request: Request, payload: dict = Body(...), db: Session = Depends(get_db)):
    """Body: { "code": str }"""
    try:
        sess = get_session_from_request(request, db)
        step = auth_flow.verify_phone_code(db, sess, str(payload.get("code") or ""))
        resp = JSONResponse(step.to_dict())
        set_session_cookie(resp, step.session.token)
        return resp
    except AuthFlowError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        logger.exception(f"[auth.phone] verify failed: {ex}")
        return JSONResponse({"error": "Failed to verify code"}, status_code=500)
