"""
Inbound message pipeline: whitelist, classify, dispatch, reply.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel

from sms_assistant.classifier import IntentClassifier
from sms_assistant.config import Settings
from sms_assistant.dispatcher import Dispatcher
from sms_assistant.handlers import HandlerContext
from sms_assistant.maps import MapsService
from sms_assistant.models import MessageDirection
from sms_assistant.repository import Repository
from sms_assistant.schemas import IncomingSms
from sms_assistant.sms import Messenger, SmsSender
from sms_assistant.utils import normalize_phone_number, utcnow

logger = logging.getLogger(__name__)

REJECTION_REPLY = (
    "Sorry, I don't recognize your number. Please contact the administrator to get access."
)
PIPELINE_ERROR_REPLY = (
    "Sorry, I encountered an error processing your message. Please try again later."
)


class ProcessResult(BaseModel):
    result: str
    intent: Optional[str] = None
    reply: Optional[str] = None


class InboundProcessor:
    """Handles one inbound SMS end to end, synchronously."""

    def __init__(
        self,
        repo: Repository,
        classifier: IntentClassifier,
        maps: MapsService,
        sender: SmsSender,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repo
        self._classifier = classifier
        self._maps = maps
        self._sender = sender
        self._settings = settings
        self._clock = clock

    def process(self, message: IncomingSms) -> ProcessResult:
        from_phone = normalize_phone_number(message.from_)
        to_phone = normalize_phone_number(message.to)
        body = message.body.strip()
        messenger = Messenger(
            self._repo,
            self._sender,
            from_number=self._settings.TWILIO_PHONE_NUMBER or to_phone,
            char_limit=self._settings.SMS_CHAR_LIMIT,
        )
        log_context = {"message_sid": message.message_sid, "from_phone": from_phone}

        try:
            inbound = self._repo.log_message(
                from_phone=from_phone,
                to_phone=to_phone,
                body=body,
                direction=MessageDirection.INBOUND.value,
                provider_message_id=message.message_sid,
                status="received",
            )

            user = self._repo.get_user_by_phone(from_phone)
            if user is None:
                logger.warning("Unauthorized sender", extra=log_context)
                messenger.send(from_phone, REJECTION_REPLY)
                return ProcessResult(result="unauthorized", reply=REJECTION_REPLY)

            logger.info("Processing message", extra={**log_context, "user_id": user.id})

            intent = self._classifier.classify(body, user)
            self._repo.set_message_intent(inbound, intent.intent)

            context = HandlerContext.build(
                self._repo, self._maps, messenger, self._settings, clock=self._clock
            )
            reply = Dispatcher(context).dispatch(intent, user)

            result = messenger.send(from_phone, reply)
            logger.info(
                "Reply sent",
                extra={**log_context, "intent": intent.intent, "delivered": result.success},
            )
            return ProcessResult(result="processed", intent=intent.intent, reply=reply)

        except Exception as e:
            logger.exception(f"Error processing message: {e}", extra=log_context)
            self._repo.rollback()
            self._send_apology(messenger, from_phone)
            return ProcessResult(result="error", reply=PIPELINE_ERROR_REPLY)

    def _send_apology(self, messenger: Messenger, to: str) -> None:
        try:
            messenger.send(to, PIPELINE_ERROR_REPLY)
        except Exception as e:
            logger.error(f"Failed to send error reply: {e}", extra={"to": to})
