from fastapi import APIRouter, Request, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.auth import (
    get_session_from_request,
    get_token_from_request,
    set_session_cookie,
    clear_session_cookie,
    client_ip,
)
from core.config import logger
from core.database import get_db
from core.identity import get_identity
from utils import auth_flow
from utils.auth_flow import AuthFlowError, AuthStep
from utils.validation import validate_email, validate_email_mx

router = APIRouter(prefix="/api", tags=["auth"])


def _step_response(step: AuthStep) -> JSONResponse:
    resp = JSONResponse(step.to_dict())
    if step.session is not None:
        set_session_cookie(resp, step.session.token)
    return resp


def _error(ex: AuthFlowError) -> JSONResponse:
    return JSONResponse({"error": ex.message}, status_code=ex.status_code)


# ---- Email validation ----

@router.post("/auth/validate-email")
async def validate_email_endpoint(payload: dict = Body(...)):
    """
    Validate email address format and MX records in real-time.
    Body: { "email": str }
    Returns: { "valid": bool, "error": str | null }
    """
    email = (payload.get("email") or "").strip()

    if not email:
        return {"valid": False, "error": "Email is required"}

    is_valid_format, format_error = validate_email(email)
    if not is_valid_format:
        return {"valid": False, "error": format_error}

    is_valid_mx, mx_error = validate_email_mx(email)
    if not is_valid_mx:
        return {"valid": False, "error": mx_error}

    return {"valid": True, "error": None}


# ---- Sign up / sign in ----

@router.post("/auth/signup")
async def auth_signup(payload: dict = Body(...), identity=Depends(get_identity)):
    """
    Body: { "email": str, "password": str }
    The provider sends its own confirmation mail; the user stays on /auth.
    """
    try:
        step = await auth_flow.sign_up(identity, payload.get("email") or "", payload.get("password") or "")
        return _step_response(step)
    except AuthFlowError as ex:
        return _error(ex)
    except Exception as ex:
        logger.exception(f"[auth.signup] failed: {ex}")
        return JSONResponse({"error": "Sign up failed"}, status_code=500)


@router.post("/auth/signin")
async def auth_signin(request: Request, payload: dict = Body(...), db: Session = Depends(get_db),
                      identity=Depends(get_identity)):
    """
    Body: { "email": str, "password": str }
    Returns the next step. The session token is also set as an HttpOnly cookie.
    """
    try:
        step = await auth_flow.sign_in(
            db, identity,
            payload.get("email") or "",
            payload.get("password") or "",
            client_ip=client_ip(request),
        )
        return _step_response(step)
    except AuthFlowError as ex:
        return _error(ex)
    except Exception as ex:
        logger.exception(f"[auth.signin] failed: {ex}")
        return JSONResponse({"error": "Sign in failed"}, status_code=500)


# ---- Email OTP ----

@router.post("/auth/otp/verify")
async def auth_otp_verify(request: Request, payload: dict = Body(...), db: Session = Depends(get_db)):
    """Body: { "code": str }"""
    try:
        sess = get_session_from_request(request, db)
        step = auth_flow.verify_email_otp(db, sess, str(payload.get("code") or ""))
        return _step_response(step)
    except AuthFlowError as ex:
        return _error(ex)
    except Exception as ex:
        logger.exception(f"[auth.otp] verify failed: {ex}")
        return JSONResponse({"error": "Failed to verify code"}, status_code=500)


@router.post("/auth/otp/resend")
async def auth_otp_resend(request: Request, db: Session = Depends(get_db)):
    try:
        sess = get_session_from_request(request, db)
        step = auth_flow.resend_email_otp(db, sess)
        return _step_response(step)
    except AuthFlowError as ex:
        return _error(ex)
    except Exception as ex:
        logger.exception(f"[auth.otp] resend failed: {ex}")
        return JSONResponse({"error": "Failed to send verification code"}, status_code=500)


# ---- Session ----

@router.get("/auth/session")
async def auth_session(request: Request, db: Session = Depends(get_db)):
    sess = get_session_from_request(request, db)
    if not sess:
        return {"authenticated": False}
    return sess.to_dict()


@router.post("/auth/signout")
async def auth_signout(request: Request, db: Session = Depends(get_db)):
    step = auth_flow.sign_out(db, get_token_from_request(request))
    resp = JSONResponse(step.to_dict())
    clear_session_cookie(resp)
    return resp


# ---- Password reset ----

@router.post("/auth/password/reset")
async def auth_password_reset(payload: dict = Body(...), identity=Depends(get_identity)):
    """
    Send a password reset link. The link lands on /update-password.
    Body: { "email": str }
    """
    try:
        step = await auth_flow.request_password_reset(identity, payload.get("email") or "")
        return step.to_dict()
    except AuthFlowError as ex:
        return _error(ex)
    except Exception as ex:
        logger.exception(f"[auth.password_reset] failed: {ex}")
        return JSONResponse({"error": "Failed to send reset link"}, status_code=500)


@router.post("/auth/password/update")
async def auth_password_update(request: Request, payload: dict = Body(...), db: Session = Depends(get_db),
                               identity=Depends(get_identity)):
    """
    Body: { "password": str, "confirm_password": str, "oob_code"?: str }
    Without oob_code the caller must hold a verified session.
    """
    try:
        sess = None if payload.get("oob_code") else get_session_from_request(request, db)
        step = await auth_flow.update_password(
            identity,
            payload.get("password") or "",
            payload.get("confirm_password") or "",
            oob_code=(payload.get("oob_code") or payload.get("oobCode") or None),
            sess=sess,
        )
        return step.to_dict()
    except AuthFlowError as ex:
        return _error(ex)
    except Exception as ex:
        logger.exception(f"[auth.password_update] failed: {ex}")
        return JSONResponse({"error": "Failed to update password"}, status_code=500)
