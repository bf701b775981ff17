"""
Identity provider client (Firebase Authentication)

Password sign-in, sign-up and out-of-band emails go through the Identity
Toolkit REST API; account administration goes through firebase-admin.
"""
import os
import json
from dataclasses import dataclass
from typing import Optional

import httpx

from core.config import (
    logger,
    FIREBASE_PROJECT_ID,
    FIREBASE_SERVICE_ACCOUNT_JSON,
    FIREBASE_SERVICE_ACCOUNT_JSON_PATH,
    FIREBASE_WEB_API_KEY,
    IDENTITY_TOOLKIT_BASE,
    IDENTITY_HTTP_TIMEOUT_SEC,
)
from utils.errors import friendly_message, provider_code


class IdentityError(Exception):
    """Error reported by (or about) the identity provider."""

    def __init__(self, message: str, status_code: int = 400, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or ""


@dataclass
class IdentityUser:
    uid: str
    email: str
    email_verified: bool = False
    id_token: Optional[str] = None


_fb_auth = None


def _admin_auth():
    """Initialize Firebase Admin on first use and return its auth module."""
    global _fb_auth
    if _fb_auth is not None:
        return _fb_auth
    try:
        import firebase_admin
        from firebase_admin import auth as fb_auth, credentials as fb_credentials

        if not getattr(firebase_admin, "_apps", []):
            options = {"projectId": FIREBASE_PROJECT_ID} if FIREBASE_PROJECT_ID else None
            if FIREBASE_SERVICE_ACCOUNT_JSON:
                cred = fb_credentials.Certificate(json.loads(FIREBASE_SERVICE_ACCOUNT_JSON))
                firebase_admin.initialize_app(cred, options)
            elif FIREBASE_SERVICE_ACCOUNT_JSON_PATH and os.path.isfile(FIREBASE_SERVICE_ACCOUNT_JSON_PATH):
                cred = fb_credentials.Certificate(FIREBASE_SERVICE_ACCOUNT_JSON_PATH)
                firebase_admin.initialize_app(cred, options)
            else:
                firebase_admin.initialize_app(options=options)
        _fb_auth = fb_auth
        logger.info("Firebase Admin initialized")
        return _fb_auth
    except Exception as ex:
        logger.warning(f"Firebase Admin not initialized: {ex}")
        raise IdentityError("Identity provider unavailable", status_code=500)


class FirebaseIdentity:
    def __init__(self, api_key: str = FIREBASE_WEB_API_KEY, base_url: str = IDENTITY_TOOLKIT_BASE,
                 timeout: float = IDENTITY_HTTP_TIMEOUT_SEC):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    # ---- Identity Toolkit REST ----

    async def _post(self, method: str, payload: dict) -> dict:
        if not self.api_key:
            raise IdentityError("Identity provider not configured", status_code=500)
        url = f"{self.base_url}/accounts:{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as ex:
            logger.warning(f"[identity] {method} request failed: {ex}")
            raise IdentityError("Could not reach the identity provider", status_code=502)
        try:
            data = r.json()
        except ValueError:
            data = {}
        if r.status_code >= 400:
            raw = ((data.get("error") or {}).get("message") if isinstance(data, dict) else "") or f"HTTP {r.status_code}"
            code = provider_code(raw)
            logger.info(f"[identity] {method} rejected: {code}")
            raise IdentityError(friendly_message(raw), status_code=400, code=code)
        return data

    async def sign_in_with_password(self, email: str, password: str) -> IdentityUser:
        data = await self._post("signInWithPassword", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })
        return IdentityUser(
            uid=data.get("localId") or "",
            email=(data.get("email") or email).lower(),
            email_verified=bool(data.get("emailVerified", False)),
            id_token=data.get("idToken"),
        )

    async def sign_up(self, email: str, password: str) -> IdentityUser:
        data = await self._post("signUp", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })
        user = IdentityUser(
            uid=data.get("localId") or "",
            email=(data.get("email") or email).lower(),
            id_token=data.get("idToken"),
        )
        # Confirmation mail is best-effort; the account exists either way
        try:
            if user.id_token:
                await self._post("sendOobCode", {"requestType": "VERIFY_EMAIL", "idToken": user.id_token})
        except IdentityError as ex:
            logger.warning(f"[identity] verification email failed for {user.uid}: {ex.message}")
        return user

    async def send_password_reset(self, email: str, continue_url: Optional[str] = None) -> None:
        payload = {"requestType": "PASSWORD_RESET", "email": email}
        if continue_url:
            payload["continueUrl"] = continue_url
        await self._post("sendOobCode", payload)

    async def confirm_password_reset(self, oob_code: str, new_password: str) -> str:
        data = await self._post("resetPassword", {"oobCode": oob_code, "newPassword": new_password})
        return (data.get("email") or "").lower()

    # ---- Admin SDK ----

    def update_password(self, uid: str, password: str) -> None:
        fb_auth = _admin_auth()
        try:
            fb_auth.update_user(uid, password=password)
        except ValueError as ex:
            raise IdentityError(str(ex), status_code=400)
        except Exception as ex:
            logger.warning(f"[identity] update_user failed for {uid}: {ex}")
            raise IdentityError("Failed to update password", status_code=400)

    def delete_user(self, uid: str) -> None:
        fb_auth = _admin_auth()
        try:
            fb_auth.delete_user(uid)
        except Exception as ex:
            logger.warning(f"[identity] delete_user failed for {uid}: {ex}")
            raise IdentityError("Failed to delete account", status_code=400)


_identity = FirebaseIdentity()


def get_identity() -> FirebaseIdentity:
    """FastAPI dependency returning the process-wide identity client."""
    return _identity
