"""
Outbound SMS: Twilio delivery plus the outbound audit record.
"""

import logging
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel

from sms_assistant.formatters import truncate_for_sms
from sms_assistant.metrics import record_external_failure, record_sms_sent
from sms_assistant.models import MessageDirection
from sms_assistant.repository import Repository
from sms_assistant.utils import normalize_phone_number

logger = logging.getLogger(__name__)

TWILIO_API_BASE_URL = "https://api.twilio.com/2010-04-01"


class SendResult(BaseModel):
    success: bool
    provider_message_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None


class SmsSender(Protocol):
    def send(self, to: str, from_: str, body: str) -> SendResult:
        ...


class TwilioSender:
    """SmsSender posting to the Twilio Messages API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        timeout: float = 10.0,
        base_url: str = TWILIO_API_BASE_URL,
        client: Optional[httpx.Client] = None,
    ):
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def send(self, to: str, from_: str, body: str) -> SendResult:
        if not self._account_sid or not self._auth_token:
            logger.error("Twilio credentials not configured")
            return SendResult(success=False, status="failed", error="not configured")

        try:
            resp = self._client.post(
                f"/Accounts/{self._account_sid}/Messages.json",
                auth=(self._account_sid, self._auth_token),
                data={"From": from_, "To": to, "Body": body},
            )
            if resp.status_code == 201:
                payload = resp.json()
                return SendResult(
                    success=True,
                    provider_message_id=payload.get("sid"),
                    status=payload.get("status", "queued"),
                )
            logger.error(f"Twilio error {resp.status_code}: {resp.text}")
            return SendResult(success=False, status="failed", error=f"HTTP {resp.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Twilio send failed: {e}")
            return SendResult(success=False, status="failed", error=type(e).__name__)


class Messenger:
    """Sends replies from the service number and records them in the message log."""

    def __init__(self, repo: Repository, sender: SmsSender, from_number: str, char_limit: int = 1600):
        self._repo = repo
        self._sender = sender
        self._from_number = from_number
        self._char_limit = char_limit

    def send(self, to: str, body: str) -> SendResult:
        body = truncate_for_sms(body, self._char_limit)
        to = normalize_phone_number(to)

        logger.info("Sending SMS", extra={"to": to, "body_length": len(body)})
        result = self._sender.send(to=to, from_=self._from_number, body=body)
        record_sms_sent(result.success)
        if not result.success:
            record_external_failure("sms")

        self._repo.log_message(
            from_phone=normalize_phone_number(self._from_number),
            to_phone=to,
            body=body,
            direction=MessageDirection.OUTBOUND.value,
            provider_message_id=result.provider_message_id,
            status=result.status,
        )
        return result
