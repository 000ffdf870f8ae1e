"""
Email transport - SendGrid.
"""
import asyncio
import html
import logging
from typing import Optional

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503)
MAX_SEND_ATTEMPTS = 3


def _to_html(body: str) -> str:
    paragraphs = [p.strip() for p in body.split("\n\n") if p.strip()]
    return "".join(f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs)


async def send_email(
    to_email: str,
    subject: Optional[str],
    body: str,
) -> dict:
    """
    Send a marketing email via SendGrid.

    Returns: {"message_id": str|None, "status": "sent"|"error", "error": str|None}
    """
    from cadence.config import get_settings
    settings = get_settings()
    masked = to_email[:20] + "***"

    if not settings.sendgrid_api_key:
        logger.warning("SendGrid not configured, cannot email %s", masked)
        return {"message_id": None, "status": "error", "error": "SendGrid not configured"}

    try:
        from sendgrid import SendGridAPIClient
        from sendgrid.helpers.mail import Mail, Email, To, Content

        # text/plain MUST be added before text/html per SendGrid
        message = Mail(
            from_email=Email(settings.sendgrid_from_email, settings.sendgrid_from_name),
            to_emails=To(to_email),
            subject=subject or settings.sendgrid_from_name,
        )
        message.content = [
            Content("text/plain", body),
            Content("text/html", _to_html(body)),
        ]

        sg = SendGridAPIClient(api_key=settings.sendgrid_api_key)

        response = None
        for attempt in range(MAX_SEND_ATTEMPTS):
            try:
                loop = asyncio.get_running_loop()
                response = await loop.run_in_executor(None, lambda: sg.send(message))
                break
            except Exception as send_err:
                status_code = getattr(send_err, "status_code", None)
                retryable = status_code in RETRYABLE_STATUS_CODES if status_code else True
                if not retryable or attempt == MAX_SEND_ATTEMPTS - 1:
                    raise
                wait_seconds = 2 ** (attempt + 1)  # 2s, 4s
                logger.warning(
                    "SendGrid send attempt %d failed (status=%s), retrying in %ds",
                    attempt + 1, status_code, wait_seconds,
                )
                await asyncio.sleep(wait_seconds)

        message_id = response.headers.get("X-Message-Id", "")
        logger.info("Email sent: to=%s message_id=%s", masked, message_id[:12])
        return {"message_id": message_id, "status": "sent", "error": None}

    except Exception as e:
        logger.error("SendGrid send failed: to=%s error=%s", masked, str(e))
        return {"message_id": None, "status": "error", "error": str(e)}
