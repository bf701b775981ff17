"""Twilio Verify client used by the phone relay and the phone second factor."""
import threading
from typing import Optional, Tuple

from core import config
from core.config import logger


class SMSError(Exception):
    pass


class SMSConfigError(SMSError):
    pass


class VerifyService:
    def __init__(self, client, service_sid: str):
        self.client = client
        self.service_sid = service_sid

    def _service(self):
        return self.client.verify.v2.services(self.service_sid)

    def send_code(self, to: str, channel: str = "sms") -> str:
        """Start a verification; returns the provider status ('pending')."""
        verification = self._service().verifications.create(to=to, channel=channel)
        return verification.status

    def check_code(self, to: str, code: str) -> Tuple[str, bool]:
        """Check a code; returns (status, valid). status is 'approved' on success."""
        check = self._service().verification_checks.create(to=to, code=code)
        return check.status, bool(check.valid)


_lock = threading.Lock()
_cached: Optional[VerifyService] = None


def get_verify_service() -> VerifyService:
    """
    Build the Verify client from configuration.

    When TWILIO_VERIFY_SERVICE_SID is not set a service is created on first
    use and reused for the rest of the process.
    """
    global _cached
    if not config.TWILIO_ACCOUNT_SID or not config.TWILIO_AUTH_TOKEN:
        raise SMSConfigError("Twilio credentials not configured")
    with _lock:
        if _cached is not None:
            return _cached
        from twilio.rest import Client

        client = Client(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN)
        service_sid = config.TWILIO_VERIFY_SERVICE_SID
        if not service_sid:
            service = client.verify.v2.services.create(friendly_name=config.TWILIO_VERIFY_FRIENDLY_NAME)
            service_sid = service.sid
            logger.info(f"[sms] created Verify service {service_sid}")
        _cached = VerifyService(client, service_sid)
        return _cached


def send_verification(phone: str) -> str:
    try:
        return get_verify_service().send_code(phone, channel="sms")
    except SMSError:
        raise
    except Exception as ex:
        logger.warning(f"[sms] send failed for {phone[:4]}***: {ex}")
        raise SMSError(getattr(ex, "msg", None) or str(ex))


def check_verification(phone: str, code: str) -> Tuple[str, bool]:
    try:
        return get_verify_service().check_code(phone, code)
    except SMSError:
        raise
    except Exception as ex:
        logger.warning(f"[sms] check failed for {phone[:4]}***: {ex}")
        raise SMSError(getattr(ex, "msg", None) or str(ex))
