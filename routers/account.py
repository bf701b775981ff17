from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.auth import get_session_from_request, clear_session_cookie
from core.config import logger
from core.database import get_db
from core.identity import get_identity
from utils import auth_flow
from utils.auth_flow import AuthFlowError

router = APIRouter(prefix="/api", tags=["account"])


@router.post("/account/delete")
async def delete_account(request: Request, db: Session = Depends(get_db), identity=Depends(get_identity)):
    """
    Permanently delete the signed-in user's account and everything stored for it:
    credentials, TOTP factors and challenges, OTP codes, phone numbers, sessions
    and finally the identity-provider user.
    """
    try:
        sess = get_session_from_request(request, db)
        step = auth_flow.delete_account(db, identity, sess)
        resp = JSONResponse(step.to_dict())
        clear_session_cookie(resp)
        return resp
    except AuthFlowError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        logger.exception(f"[account.delete] failed: {ex}")
        return JSONResponse({"error": "Failed to delete account"}, status_code=500)
