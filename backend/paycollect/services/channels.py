# services/channels.py
import logging
from typing import Literal, Optional

import httpx
from pydantic import BaseModel

from paycollect.core.config import settings

logger = logging.getLogger("paycollect")


class SmsOutcome(BaseModel):
    outcome: Literal["sent", "failed"]
    provider_message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.outcome == "sent"


# -------------------------------------------------------------------
# SMS (Twilio)
# -------------------------------------------------------------------
class TwilioNotifier:
    """
    Twilio Messages API.
    Never raises: every failure comes back as a `failed` outcome so callers
    can record it against the link.
    """

    def __init__(
        self,
        sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        override_to: Optional[str] = None,
        api_base: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        self.sid = sid if sid is not None else settings.TWILIO_SID
        self.auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else settings.TWILIO_SMS_NUMBER
        self.override_to = override_to if override_to is not None else settings.SMS_OVERRIDE_TO
        self.api_base = (api_base or settings.TWILIO_API_BASE).rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def send_sms(self, phone: str, message: str) -> SmsOutcome:
        if not (self.sid and self.auth_token and self.from_number):
            logger.error("[SMS] Twilio credentials not configured")
            return SmsOutcome(outcome="failed", error="SMS provider not configured")

        # SMS_OVERRIDE_TO redirects everything (staging / QA)
        recipient = self.override_to or phone
        url = f"{self.api_base}/Accounts/{self.sid}/Messages.json"

        logger.info(f"[SMS] Attempting send | phone={recipient} | chars={len(message)}")

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    data={"To": recipient, "From": self.from_number, "Body": message},
                    auth=(self.sid, self.auth_token),
                )
        except httpx.TimeoutException as e:
            logger.error(f"[SMS] Timeout error | phone={recipient} | error={e}")
            return SmsOutcome(outcome="failed", error="Twilio SMS timeout")
        except httpx.RequestError as e:
            logger.error(f"[SMS] Request error | phone={recipient} | error={e}")
            return SmsOutcome(outcome="failed", error=f"Twilio SMS request failed: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            error = data.get("message") or response.text
            logger.error(f"[SMS] HTTP error {response.status_code} | {error}")
            return SmsOutcome(outcome="failed", error=error)

        if data.get("status") == "failed" or data.get("error_code"):
            error = data.get("error_message") or f"Twilio error {data.get('error_code')}"
            logger.error(f"[SMS] Rejected by Twilio | response={data}")
            return SmsOutcome(outcome="failed", provider_message_id=data.get("sid"), error=error)

        logger.info(f"[SMS] ✅ Accepted | phone={recipient} | sid={data.get('sid')}")
        return SmsOutcome(outcome="sent", provider_message_id=data.get("sid"))
