"""
WhatsApp transport - Meta Cloud API (Graph API) over httpx.
"""
import logging
import re

import httpx

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


def format_phone(phone: str) -> str:
    """Graph API wants digits only, no leading +."""
    return re.sub(r"\D", "", phone or "")


def _extract_error(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            error = exc.response.json().get("error", {})
            return f"meta_error_{error.get('code', 'unknown')}: {error.get('message', str(exc))}"
        except ValueError:
            return f"HTTP {exc.response.status_code}: {exc.response.text[:200]}"
    if isinstance(exc, httpx.TimeoutException):
        return "meta_timeout"
    if isinstance(exc, httpx.ConnectError):
        return "meta_connect_error"
    return str(exc)


async def send_whatsapp_text(to: str, body: str) -> dict:
    """
    Send a free-form text message.

    Returns: {"message_id": str|None, "status": "sent"|"failed", "error": str|None}
    """
    from cadence.config import get_settings
    settings = get_settings()

    if not settings.whatsapp_access_token or not settings.whatsapp_phone_number_id:
        logger.warning("WhatsApp Cloud API not configured")
        return {"message_id": None, "status": "failed", "error": "WhatsApp not configured"}

    url = (
        f"{GRAPH_API_BASE}/{settings.whatsapp_api_version}"
        f"/{settings.whatsapp_phone_number_id}/messages"
    )
    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": format_phone(to),
        "type": "text",
        "text": {"preview_url": False, "body": body},
    }
    headers = {
        "Authorization": f"Bearer {settings.whatsapp_access_token}",
        "Content-Type": "application/json",
    }

    try:
        async with httpx.AsyncClient(timeout=settings.whatsapp_timeout_seconds) as client:
            response = await client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            data = response.json()
    except Exception as e:
        error = _extract_error(e)
        logger.warning("WhatsApp send failed for %s***: %s", format_phone(to)[:6], error)
        return {"message_id": None, "status": "failed", "error": error}

    messages = data.get("messages") or [{}]
    message_id = messages[0].get("id")
    logger.info("WhatsApp sent to %s***: %s", format_phone(to)[:6], message_id)
    return {"message_id": message_id, "status": "sent", "error": None}
