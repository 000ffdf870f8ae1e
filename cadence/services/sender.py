"""
Sender - the outbound transport boundary used by the runner and broadcasts.

Anything with an async `send(channel, to, body, subject=None) -> SendResult`
can be passed in; ChannelSender is the default that routes to Twilio,
SendGrid and the WhatsApp Cloud API. Delivery is at-least-once: a sender
may see the same step twice if a worker dies after sending.
"""
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class SendResult:
    """Outcome of one send attempt."""

    def __init__(self, ok: bool, external_id: Optional[str] = None, error: Optional[str] = None):
        self.ok = ok
        self.external_id = external_id
        self.error = error

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:
        status = "OK" if self.ok else f"FAILED: {self.error}"
        return f"<SendResult {status}>"


class Sender(Protocol):
    async def send(
        self,
        channel: str,
        to: str,
        body: str,
        subject: Optional[str] = None,
    ) -> SendResult:
        ...


def recipient_for(channel: str, lead) -> Optional[str]:
    """Address to use for a lead on a channel (email for email, phone otherwise)."""
    if channel == "email":
        return lead.email or None
    return lead.phone or None


class ChannelSender:
    """Default sender: sms -> Twilio, email -> SendGrid, whatsapp -> Cloud API."""

    async def send(
        self,
        channel: str,
        to: str,
        body: str,
        subject: Optional[str] = None,
    ) -> SendResult:
        if channel == "sms":
            from cadence.services.sms import send_sms
            result = await send_sms(to, body)
            return SendResult(result["status"] != "failed", result.get("sid"), result.get("error"))

        if channel == "email":
            from cadence.services.email import send_email
            result = await send_email(to, subject, body)
            return SendResult(result["status"] == "sent", result.get("message_id"), result.get("error"))

        if channel == "whatsapp":
            from cadence.services.whatsapp import send_whatsapp_text
            result = await send_whatsapp_text(to, body)
            return SendResult(result["status"] == "sent", result.get("message_id"), result.get("error"))

        logger.error("Unsupported channel: %s", channel)
        return SendResult(False, error=f"Unsupported channel: {channel}")


_default_sender: Optional[ChannelSender] = None


def get_sender() -> ChannelSender:
    global _default_sender
    if _default_sender is None:
        _default_sender = ChannelSender()
    return _default_sender
