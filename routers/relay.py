"""
Phone verification relay.

Keeps the Twilio credentials server-side: the caller sends an action and a
phone number, the relay talks to Twilio Verify. Every failure is answered with
400 and the error message so callers only need to handle one shape.
"""
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.auth import get_session_from_request
from core.config import logger
from core.database import get_db
from utils import sms

router = APIRouter(prefix="/api", tags=["relay"])


class RelayError(Exception):
    pass


@router.post("/functions/twilio-verify")
async def twilio_verify(request: Request, db: Session = Depends(get_db)):
    """
    Body: { "action": "send" | "verify", "phoneNumber": str, "code"?: str }
    send   -> { success: true, status }
    verify -> { success: true, status, valid }
    """
    try:
        if not get_session_from_request(request, db):
            raise RelayError("Unauthorized")

        try:
            payload = await request.json()
        except ValueError:
            raise RelayError("Invalid JSON body")
        if not isinstance(payload, dict):
            raise RelayError("Invalid JSON body")

        action = payload.get("action")
        phone = (payload.get("phoneNumber") or "").strip()

        service = sms.get_verify_service()

        if action == "send":
            if not phone:
                raise RelayError("Phone number required")
            status = service.send_code(phone, channel="sms")
            logger.info(f"[relay] send {phone[:4]}*** -> {status}")
            return {"success": True, "status": status}

        if action == "verify":
            if not phone:
                raise RelayError("Phone number required")
            status, valid = service.check_code(phone, str(payload.get("code") or ""))
            logger.info(f"[relay] verify {phone[:4]}*** -> {status}")
            return {"success": True, "status": status, "valid": valid}

        raise RelayError("Invalid action")
    except Exception as ex:
        message = getattr(ex, "msg", None) or str(ex) or "Request failed"
        logger.warning(f"[relay] {message}")
        return JSONResponse({"error": message}, status_code=400)
