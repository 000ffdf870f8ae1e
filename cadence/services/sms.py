"""
SMS transport - Twilio.
Single attempt per call: the runner treats a failed send as a failed enrollment,
and retrying is left to the operator.
"""
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

TWILIO_CLIENT_TIMEOUT = 10


def _get_twilio_client():
    """Get a Twilio REST client with configured timeout."""
    from twilio.rest import Client as TwilioClient
    from twilio.http.http_client import TwilioHttpClient
    from cadence.config import get_settings
    settings = get_settings()
    http_client = TwilioHttpClient(timeout=TWILIO_CLIENT_TIMEOUT)
    return TwilioClient(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        http_client=http_client,
    )


async def _run_sync(func, *args, **kwargs):
    """Run a synchronous function in the thread pool to avoid blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


def mask_phone(phone: str) -> str:
    """Mask phone number for logging - show first 6 digits only."""
    if len(phone) > 6:
        return phone[:6] + "***"
    return phone


def _extract_error_code(error: Exception) -> Optional[str]:
    code = getattr(error, "code", None)
    return str(code) if code is not None else None


async def send_sms(to: str, body: str) -> dict:
    """
    Send an SMS via Twilio.

    Returns: {"sid": str|None, "status": str, "error": str|None, "error_code": str|None}
    """
    from cadence.config import get_settings
    settings = get_settings()
    masked = mask_phone(to)

    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        logger.warning("Twilio not configured, cannot send SMS to %s", masked)
        return {"sid": None, "status": "failed", "error": "Twilio not configured", "error_code": None}

    kwargs = {"to": to, "body": body}
    if settings.twilio_messaging_service_sid:
        kwargs["messaging_service_sid"] = settings.twilio_messaging_service_sid
    elif settings.twilio_from_phone:
        kwargs["from_"] = settings.twilio_from_phone
    else:
        return {
            "sid": None,
            "status": "failed",
            "error": "Either twilio_from_phone or twilio_messaging_service_sid required",
            "error_code": None,
        }

    try:
        client = _get_twilio_client()
        message = await _run_sync(client.messages.create, **kwargs)
    except Exception as e:
        error_code = _extract_error_code(e)
        logger.warning("Twilio send failed for %s: code=%s error=%s", masked, error_code, str(e))
        return {"sid": None, "status": "failed", "error": str(e), "error_code": error_code}

    logger.info("SMS sent via Twilio to %s: %s", masked, message.sid)
    return {"sid": message.sid, "status": message.status or "sent", "error": None, "error_code": None}
