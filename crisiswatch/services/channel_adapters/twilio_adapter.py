"""Twilio voice/SMS adapter.

Voice calls arrive as status callbacks (CallStatus) and speech
transcriptions (SpeechResult); SMS arrives as Body. The twilio REST
client is blocking, so calls into it run on a worker thread.
"""
import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from twilio.request_validator import RequestValidator
from twilio.twiml.voice_response import VoiceResponse

from crisiswatch.shared.events import EventType
from crisiswatch.shared.models import (
    ConversationParticipant,
    ConversationStatus,
    PlatformType,
    Speaker,
)
from crisiswatch.shared.utils import hash_contact
from crisiswatch.services.session_service import SessionStore
from .base import (
    AdapterNotReadyError,
    ChannelAdapter,
    InboundEvent,
    MalformedEventError,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

START_STATUSES = frozenset({"ringing", "in-progress", "initiated"})
END_STATUSES = frozenset({"completed", "busy", "failed", "no-answer", "canceled"})


class TwilioAdapter(ChannelAdapter):
    """Adapter for Twilio programmable voice and SMS."""

    platform_type = PlatformType.TWILIO

    def __init__(
        self,
        session_store: SessionStore,
        account_sid: str,
        auth_token: str,
        webhook_url: Optional[str] = None,
        validate_signatures: bool = True,
        client: Any = None,
    ):
        super().__init__(session_store, {"webhook_url": webhook_url})
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.webhook_url = webhook_url
        self.validate_signatures = validate_signatures
        self._client = client
        self._validator = RequestValidator(auth_token)

    def _get_client(self):
        """Lazy initialization of the Twilio REST client."""
        if self._client is None:
            from twilio.rest import Client
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    async def initialize(self) -> None:
        if not self.account_sid or not self.auth_token:
            raise AdapterNotReadyError("Twilio credentials not configured")
        client = self._get_client()
        account = await asyncio.to_thread(client.api.v2010.accounts(self.account_sid).fetch)
        self.initialized = True
        logger.info(
            "TWILIO_ADAPTER_INITIALIZED",
            extra={"account_status": getattr(account, "status", None)}
        )

    @staticmethod
    def determine_event(data: Mapping[str, Any]) -> Optional[WebhookEvent]:
        """Infer the event kind from a Twilio callback's fields."""
        if data.get("RecordingUrl"):
            return WebhookEvent.RECORDING_AVAILABLE
        if data.get("SpeechResult") or data.get("Body"):
            return WebhookEvent.MESSAGE_RECEIVED
        status = data.get("CallStatus")
        if status in START_STATUSES:
            return WebhookEvent.CONVERSATION_STARTED
        if status in END_STATUSES:
            return WebhookEvent.CONVERSATION_ENDED
        return None

    def validate_signature(self, event: InboundEvent) -> bool:
        if not self.validate_signatures:
            return True
        if not event.signature:
            return False
        url = event.url or self.webhook_url or ""
        return self._validator.validate(url, dict(event.data), event.signature)

    @staticmethod
    def _thread_id(data: Mapping[str, Any]) -> str:
        # SMS threads have no CallSid; the sender's number identifies them
        thread_id = data.get("CallSid") or data.get("From")
        if not thread_id:
            raise MalformedEventError("Missing required fields: CallSid")
        return thread_id

    async def handle_event(self, event: InboundEvent) -> None:
        handlers = {
            WebhookEvent.CONVERSATION_STARTED: self._handle_call_started,
            WebhookEvent.MESSAGE_RECEIVED: self._handle_message,
            WebhookEvent.CONVERSATION_ENDED: self._handle_call_ended,
            WebhookEvent.RECORDING_AVAILABLE: self._handle_recording,
        }
        handler = handlers.get(event.event)
        if handler is None:
            logger.debug("TWILIO_EVENT_UNHANDLED", extra={"event": event.event.value})
            return
        await handler(event.data)

    async def _handle_call_started(self, data: Mapping[str, Any]) -> None:
        call_sid = self._thread_id(data)
        caller, callee = data.get("From"), data.get("To")
        session = self.open_session(
            call_sid,
            metadata={"direction": data.get("Direction"), "message_type": "voice"},
            participants=[
                ConversationParticipant(f"caller_{call_sid}", Speaker.CALLER, phone_number=caller),
                ConversationParticipant(f"agent_{call_sid}", Speaker.AGENT, phone_number=callee),
            ],
        )
        logger.info(
            "TWILIO_CALL_STARTED",
            extra={
                "session_id": session.session_id if session else None,
                "from_hash": hash_contact(caller),
            }
        )

    async def _handle_message(self, data: Mapping[str, Any]) -> None:
        thread_id = self._thread_id(data)
        if data.get("SpeechResult"):
            content = data["SpeechResult"]
            metadata: Dict[str, Any] = {"message_type": "voice"}
            if data.get("Confidence"):
                try:
                    metadata["transcription_confidence"] = float(data["Confidence"])
                except (TypeError, ValueError):
                    raise MalformedEventError(f"Invalid Confidence: {data['Confidence']!r}")
        elif data.get("Body"):
            content = data["Body"]
            metadata = {"message_type": "sms"}
        else:
            raise MalformedEventError("Missing required fields: SpeechResult or Body")

        session = self.session_for(thread_id)
        if session is None or session.status.is_terminal:
            # Missed call start, or the first SMS of a thread
            session = self.open_session(
                thread_id,
                metadata={"message_type": metadata["message_type"], "to": data.get("To")},
                participants=[
                    ConversationParticipant(
                        f"caller_{thread_id}", Speaker.CALLER, phone_number=data.get("From")
                    ),
                ],
            )
            if session is None:
                return

        await self.session_store.append_message(session.session_id, Speaker.CALLER, content, metadata=metadata)

    async def _handle_call_ended(self, data: Mapping[str, Any]) -> None:
        session = self.session_for(self._thread_id(data))
        if session is None:
            logger.debug("TWILIO_END_FOR_UNKNOWN_CALL")
            return
        self.session_store.update_metadata(
            session.session_id,
            duration=data.get("CallDuration"),
            call_status=data.get("CallStatus"),
        )
        self.session_store.set_status(session.session_id, ConversationStatus.ENDED)

    async def _handle_recording(self, data: Mapping[str, Any]) -> None:
        session = self.session_for(self._thread_id(data))
        if session is None:
            return
        self.session_store.update_metadata(
            session.session_id,
            recording_url=data.get("RecordingUrl"),
            recording_sid=data.get("RecordingSid"),
        )
        if self.session_store.event_bus is not None:
            self.session_store.event_bus.publish(
                EventType.RECORDING_AVAILABLE,
                session.session_id,
                {"recording_sid": data.get("RecordingSid"), "recording_url": data.get("RecordingUrl")},
            )

    @staticmethod
    def build_say_twiml(text: str) -> str:
        response = VoiceResponse()
        response.say(text)
        return str(response)

    async def send_message(self, conversation_id: str, text: str) -> None:
        session = self.session_store.get(conversation_id)
        if session is None:
            raise KeyError(f"Unknown conversation: {conversation_id}")

        client = self._get_client()
        if session.metadata.get("message_type") == "sms":
            caller = session.caller
            await asyncio.to_thread(
                client.messages.create,
                to=caller.phone_number if caller else session.platform_session_id,
                from_=session.metadata.get("to"),
                body=text,
            )
        else:
            await asyncio.to_thread(
                client.calls(session.platform_session_id).update,
                twiml=self.build_say_twiml(text),
            )

        await self.session_store.append_message(
            conversation_id, Speaker.AGENT, text, metadata={"outbound": True}
        )
        logger.info(
            "TWILIO_MESSAGE_SENT",
            extra={"session_id": conversation_id, "length": len(text)}
        )

    def health_details(self) -> Dict[str, Any]:
        return {"signature_validation": self.validate_signatures}
