"""
Server-rendered pages: landing, auth, second factor, password vault and
password recovery. Guards redirect according to the session state; toasts
survive redirects through a one-shot flash cookie.
"""
import base64
import json
from typing import Optional

from fastapi import APIRouter, Request, Form, Depends
from fastapi.responses import HTMLResponse, RedirectResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy.orm import Session

from core.auth import (
    get_session_from_request,
    get_token_from_request,
    set_session_cookie,
    clear_session_cookie,
    client_ip,
)
from core.config import APP_NAME, TEMPLATES_DIR, logger
from core.database import get_db
from core.identity import get_identity
from models.user_security import PhoneNumber, mask_phone
from routers.credentials import list_credentials, create_credential, delete_credential, CredentialError
from utils import auth_flow, mfa
from utils.auth_flow import AuthFlowError, AuthStep

router = APIRouter(tags=["pages"])

FLASH_COOKIE = "sv_flash"

_jinja_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html", "xml"]),
)


# ---- Rendering helpers ----

def _pop_flash(request: Request) -> Optional[dict]:
    raw = request.cookies.get(FLASH_COOKIE)
    if not raw:
        return None
    try:
        return json.loads(base64.urlsafe_b64decode(raw.encode("ascii")).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None


def render_page(request: Request, template: str, status_code: int = 200, toast: Optional[dict] = None, **context) -> HTMLResponse:
    flash = _pop_flash(request)
    html = _jinja_env.get_template(template).render(
        app_name=APP_NAME,
        request_path=request.url.path,
        toast=toast or flash,
        **context,
    )
    resp = HTMLResponse(content=html, status_code=status_code)
    if flash is not None:
        resp.delete_cookie(FLASH_COOKIE, path="/")
    return resp


def redirect(url: str, title: Optional[str] = None, message: Optional[str] = None,
             variant: str = "default") -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=303)
    if message:
        payload = json.dumps({"title": title or "", "message": message, "variant": variant})
        resp.set_cookie(
            FLASH_COOKIE,
            base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii"),
            max_age=60,
            httponly=True,
            samesite="lax",
            path="/",
        )
    return resp


def _error_toast(message: str) -> dict:
    return {"title": "Error", "message": message, "variant": "destructive"}


def _follow(step: AuthStep) -> RedirectResponse:
    resp = redirect(step.next, step.title, step.message)
    if step.session is not None:
        set_session_cookie(resp, step.session.token)
    return resp


# ---- Landing ----

@router.get("/", response_class=HTMLResponse)
async def home_page(request: Request, db: Session = Depends(get_db)):
    sess = get_session_from_request(request, db)
    return render_page(request, "home.html", session=sess)


# ---- Sign in / sign up ----

@router.get("/auth", response_class=HTMLResponse)
async def auth_page(request: Request, db: Session = Depends(get_db)):
    sess = get_session_from_request(request, db)
    if sess and sess.otp_verified:
        return redirect("/passwords")
    if sess:
        return redirect("/verify-otp")
    return render_page(request, "auth.html", mode=request.query_params.get("mode") or "signin")


@router.post("/auth/signin")
async def auth_signin_form(request: Request, email: str = Form(""), password: str = Form(""),
                           db: Session = Depends(get_db), identity=Depends(get_identity)):
    try:
        step = await auth_flow.sign_in(db, identity, email, password, client_ip=client_ip(request))
    except AuthFlowError as ex:
        return render_page(request, "auth.html", status_code=ex.status_code, toast=_error_toast(ex.message),
                           mode="signin", email=email)
    return _follow(step)


@router.post("/auth/signup")
async def auth_signup_form(request: Request, email: str = Form(""), password: str = Form(""),
                           identity=Depends(get_identity)):
    try:
        step = await auth_flow.sign_up(identity, email, password)
    except AuthFlowError as ex:
        return render_page(request, "auth.html", status_code=ex.status_code, toast=_error_toast(ex.message),
                           mode="signup", email=email)
    return redirect(step.next, step.title, step.message)


# ---- Second factor ----

def _verify_context(db: Session, sess) -> dict:
    ctx = {"factor": sess.pending_factor, "email": sess.email, "phone_hint": None, "enrollment": None}
    if sess.pending_factor == "totp_enroll":
        pending = mfa.get_pending_totp_factor(db, sess.uid)
        if pending:
            ctx["enrollment"] = mfa.describe_enrollment(pending, sess.email)
        else:
            ctx["enrollment"] = auth_flow.totp_enroll(db, sess)
    if sess.pending_phone:
        ctx["phone_hint"] = mask_phone(sess.pending_phone)
    return ctx


@router.get("/verify-otp", response_class=HTMLResponse)
async def verify_otp_page(request: Request, db: Session = Depends(get_db)):
    sess = get_session_from_request(request, db)
    if not sess:
        return redirect("/auth", "Error", "Missing email information. Please log in again.", "destructive")
    if sess.otp_verified:
        return redirect("/passwords")
    return render_page(request, "verify_otp.html", **_verify_context(db, sess))


@router.post("/verify-otp")
async def verify_otp_form(request: Request, code: str = Form(""), db: Session = Depends(get_db)):
    sess = get_session_from_request(request, db)
    if not sess:
        return redirect("/auth", "Error", "Missing email information. Please log in again.", "destructive")
    if sess.otp_verified:
        return redirect("/passwords")
    try:
        if sess.pending_factor in ("totp", "totp_enroll"):
            step = auth_flow.totp_challenge_and_verify(db, sess, code)
        elif sess.pending_factor in ("phone", "phone_enroll"):
            step = auth_flow.verify_phone_code(db, sess, code)
        else:
            step = auth_flow.verify_email_otp(db, sess, code)
    except AuthFlowError as ex:
        return render_page(request, "verify_otp.html", status_code=ex.status_code,
                           toast=_error_toast(ex.message), **_verify_context(db, sess))
    return _follow(step)


@router.post("/verify-otp/resend")
async def verify_otp_resend(request: Request, db: Session = Depends(get_db)):
    sess = get_session_from_request(request, db)
    if not sess:
        return redirect("/auth", "Error", "Missing email information. Please log in again.", "destructive")
    try:
        if sess.pending_factor in ("phone", "phone_enroll"):
            step = auth_flow.send_phone_code(db, sess)
        else:
            step = auth_flow.resend_email_otp(db, sess)
    except AuthFlowError as ex:
        return redirect("/verify-otp", "Error", ex.message, "destructive")
    return redirect("/verify-otp", step.title, step.message)


@router.post("/verify-otp/phone")
async def verify_otp_phone(request: Request, phone_number: str = Form(""), db: Session = Depends(get_db)):
    sess = get_session_from_request(request, db)
    if not sess:
        return redirect("/auth", "Error", "Missing email information. Please log in again.", "destructive")
    try:
        step = auth_flow.send_phone_code(db, sess, phone_number)
    except AuthFlowError as ex:
        return render_page(request, "verify_otp.html", status_code=ex.status_code,
                           toast=_error_toast(ex.message), **_verify_context(db, sess))
    return redirect("/verify-otp", step.title, step.message)


# ---- Password vault ----

def _vault_guard(request: Request, db: Session):
    sess = get_session_from_request(request, db)
    if not sess:
        return None, redirect("/auth")
    if not sess.otp_verified:
        return None, redirect("/verify-otp")
    return sess, None


def _passwords_context(db: Session, sess, reveal: Optional[str]) -> dict:
    phone = db.query(PhoneNumber).filter(PhoneNumber.uid == sess.uid).first()
    return {
        "email": sess.email,
        "credentials": list_credentials(db, sess.uid),
        "reveal": reveal,
        "factors": [f.to_dict() for f in mfa.list_factors(db, sess.uid)],
        "phone": phone.to_dict() if phone else None,
    }


@router.get("/passwords", response_class=HTMLResponse)
async def passwords_page(request: Request, db: Session = Depends(get_db)):
    sess, denied = _vault_guard(request, db)
    if denied:
        return denied
    return render_page(request, "passwords.html", **_passwords_context(db, sess, request.query_params.get("reveal")))


@router.post("/passwords")
async def passwords_create(request: Request, website_url: str = Form(""), username: str = Form(""),
                           password: str = Form(""), db: Session = Depends(get_db)):
    sess, denied = _vault_guard(request, db)
    if denied:
        return denied
    try:
        create_credential(db, sess.uid, website_url, username, password)
    except CredentialError as ex:
        return render_page(request, "passwords.html", status_code=ex.status_code, toast=_error_toast(ex.message),
                           form={"website_url": website_url, "username": username},
                           **_passwords_context(db, sess, None))
    return redirect("/passwords", "Success", "Password saved successfully")


@router.post("/passwords/{credential_id}/delete")
async def passwords_delete(credential_id: int, request: Request, db: Session = Depends(get_db)):
    sess, denied = _vault_guard(request, db)
    if denied:
        return denied
    try:
        delete_credential(db, sess.uid, credential_id)
    except CredentialError as ex:
        return redirect("/passwords", "Error", ex.message, "destructive")
    return redirect("/passwords", "Success", "Password deleted successfully")


@router.post("/logout")
async def logout(request: Request, db: Session = Depends(get_db)):
    step = auth_flow.sign_out(db, get_token_from_request(request))
    resp = redirect(step.next, step.title, step.message)
    clear_session_cookie(resp)
    return resp


@router.post("/account/delete")
async def account_delete_form(request: Request, db: Session = Depends(get_db), identity=Depends(get_identity)):
    sess, denied = _vault_guard(request, db)
    if denied:
        return denied
    try:
        step = auth_flow.delete_account(db, identity, sess)
    except AuthFlowError as ex:
        return redirect("/passwords", "Error", ex.message, "destructive")
    resp = redirect(step.next, step.title, step.message)
    clear_session_cookie(resp)
    return resp


# ---- Password recovery ----

@router.get("/reset-password", response_class=HTMLResponse)
async def reset_password_page(request: Request):
    return render_page(request, "reset_password.html")


@router.post("/reset-password")
async def reset_password_form(request: Request, email: str = Form(""), identity=Depends(get_identity)):
    try:
        step = await auth_flow.request_password_reset(identity, email)
    except AuthFlowError as ex:
        return render_page(request, "reset_password.html", status_code=ex.status_code,
                           toast=_error_toast(ex.message), email=email)
    return redirect(step.next, step.title, step.message)


@router.get("/update-password", response_class=HTMLResponse)
async def update_password_page(request: Request, db: Session = Depends(get_db)):
    oob_code = (request.query_params.get("oobCode") or "").strip()
    if not oob_code:
        sess = get_session_from_request(request, db)
        if not sess or not sess.otp_verified:
            return redirect("/auth", "Error", "Invalid access", "destructive")
    return render_page(request, "update_password.html", oob_code=oob_code)


@router.post("/update-password")
async def update_password_form(request: Request, password: str = Form(""), confirm_password: str = Form(""),
                               oob_code: str = Form(""), db: Session = Depends(get_db),
                               identity=Depends(get_identity)):
    sess = None if oob_code else get_session_from_request(request, db)
    try:
        step = await auth_flow.update_password(identity, password, confirm_password,
                                               oob_code=oob_code or None, sess=sess)
    except AuthFlowError as ex:
        if ex.status_code == 401:
            return redirect("/auth", "Error", "Invalid access", "destructive")
        return render_page(request, "update_password.html", status_code=ex.status_code,
                           toast=_error_toast(ex.message), oob_code=oob_code)
    logger.info("[auth.password_update] password changed via page")
    return redirect(step.next, step.title, step.message)
