"""Genesys Cloud adapter.

Authenticates with OAuth client credentials, subscribes a webhook
notification channel and relays conversation/message/participant
notifications into the session store.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from crisiswatch.shared.models import (
    ConversationMessage,
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

NOTIFICATION_TOPICS = [
    "v2.conversations.{id}.messages",
    "v2.conversations.{id}.participants.{participantId}.state",
    "v2.conversations.{id}.state",
]

EVENT_TYPES: Dict[str, WebhookEvent] = {
    "conversation.start": WebhookEvent.CONVERSATION_STARTED,
    "conversation.end": WebhookEvent.CONVERSATION_ENDED,
    "message": WebhookEvent.MESSAGE_RECEIVED,
    "participant.join": WebhookEvent.PARTICIPANT_JOINED,
    "participant.leave": WebhookEvent.PARTICIPANT_LEFT,
}

TOKEN_EXPIRY_MARGIN_SECONDS = 60


def map_speaker(from_user: Optional[Mapping[str, Any]]) -> Speaker:
    purpose = (from_user or {}).get("purpose")
    if purpose == "customer":
        return Speaker.CALLER
    if purpose == "agent":
        return Speaker.AGENT
    return Speaker.SYSTEM


def _parse_timestamp(value: Any) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return datetime.now(timezone.utc)
    # Offset-less timestamps are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _participant(data: Mapping[str, Any]) -> ConversationParticipant:
    return ConversationParticipant(
        participant_id=str(data.get("id")),
        role=Speaker.CALLER if data.get("purpose") == "customer" else Speaker.AGENT,
        name=data.get("name"),
        phone_number=data.get("address"),
        metadata={"purpose": data.get("purpose")},
    )


class GenesysAdapter(ChannelAdapter):
    """Adapter for Genesys Cloud conversations."""

    platform_type = PlatformType.GENESYS

    def __init__(
        self,
        session_store: SessionStore,
        client_id: str,
        client_secret: str,
        environment: str = "mypurecloud.com",
        webhook_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(session_store, {"environment": environment, "webhook_url": webhook_url})
        self.client_id = client_id
        self.client_secret = client_secret
        self.environment = environment
        self.webhook_url = webhook_url
        self.api_base = f"https://api.{environment}"
        self.login_url = f"https://login.{environment}/oauth/token"
        self.timeout_seconds = timeout_seconds
        self._http = session
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    @staticmethod
    def determine_event(data: Mapping[str, Any]) -> Optional[WebhookEvent]:
        return EVENT_TYPES.get(data.get("eventType", ""))

    def _get_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
        return self._http

    async def authenticate(self) -> None:
        async with self._get_http().post(
            self.login_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
        ) as response:
            response.raise_for_status()
            token = await response.json()

        self._access_token = token["access_token"]
        expires_in = float(token.get("expires_in", 3600))
        self._token_expires_at = time.monotonic() + expires_in - TOKEN_EXPIRY_MARGIN_SECONDS
        logger.info("GENESYS_AUTHENTICATED", extra={"expires_in": expires_in})

    async def _api(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        """Call the Genesys API, re-authenticating once on expiry or 401."""
        if self._access_token is None or time.monotonic() >= self._token_expires_at:
            await self.authenticate()

        for attempt in (1, 2):
            async with self._get_http().request(
                method,
                f"{self.api_base}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {self._access_token}"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status == 401 and attempt == 1:
                    logger.warning("GENESYS_TOKEN_REJECTED", extra={"path": path})
                    await self.authenticate()
                    continue
                response.raise_for_status()
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        return None

    async def initialize(self) -> None:
        if not self.client_id or not self.client_secret:
            raise AdapterNotReadyError("Genesys credentials not configured")
        await self.authenticate()
        if self.webhook_url:
            await self._api("POST", "/api/v2/notifications/channels", {
                "type": "Webhook",
                "uri": self.webhook_url,
                "events": NOTIFICATION_TOPICS,
            })
        self.initialized = True
        logger.info("GENESYS_ADAPTER_INITIALIZED", extra={"environment": self.environment})

    async def handle_event(self, event: InboundEvent) -> None:
        data = event.data
        self.require(data, "conversationId")
        conversation_id = data["conversationId"]

        if event.event == WebhookEvent.CONVERSATION_STARTED:
            participants = [_participant(p) for p in data.get("participants") or []]
            session = self.open_session(conversation_id, participants=participants)
            logger.info(
                "GENESYS_CONVERSATION_STARTED",
                extra={"session_id": session.session_id if session else None, "participants": len(participants)}
            )

        elif event.event == WebhookEvent.MESSAGE_RECEIVED:
            message = data.get("message")
            if not isinstance(message, Mapping):
                raise MalformedEventError("Missing required fields: message")
            content = message.get("textBody") or message.get("body") or ""
            session = self.open_session(conversation_id)
            if session is None:
                return
            await self.session_store.append_message(
                session.session_id,
                map_speaker(message.get("fromUser")),
                content,
                timestamp=_parse_timestamp(message.get("timestamp")),
                metadata={"genesys_message_id": message.get("id"), "message_type": message.get("messageType")},
            )

        elif event.event == WebhookEvent.CONVERSATION_ENDED:
            session = self.session_for(conversation_id)
            if session is not None:
                self.session_store.set_status(session.session_id, ConversationStatus.ENDED)

        elif event.event == WebhookEvent.PARTICIPANT_JOINED:
            participant = data.get("participant")
            if not isinstance(participant, Mapping):
                raise MalformedEventError("Missing required fields: participant")
            session = self.session_for(conversation_id)
            if session is not None:
                self.session_store.add_participant(session.session_id, _participant(participant))
                logger.info(
                    "GENESYS_PARTICIPANT_JOINED",
                    extra={"session_id": session.session_id, "address_hash": hash_contact(participant.get("address"))}
                )

        elif event.event == WebhookEvent.PARTICIPANT_LEFT:
            participant = data.get("participant") or {}
            session = self.session_for(conversation_id)
            if session is not None and participant.get("id"):
                self.session_store.remove_participant(session.session_id, str(participant["id"]))

    async def send_message(self, conversation_id: str, text: str) -> None:
        session = self.session_store.get(conversation_id)
        if session is None:
            raise KeyError(f"Unknown conversation: {conversation_id}")
        await self._api(
            "POST",
            f"/api/v2/conversations/{session.platform_session_id}/messages",
            {"textBody": text, "messageType": "Text"},
        )
        await self.session_store.append_message(conversation_id, Speaker.AGENT, text, metadata={"outbound": True})

    async def get_conversation_history(self, conversation_id: str) -> List[ConversationMessage]:
        session = self.session_store.get(conversation_id)
        if session is None:
            return []
        try:
            body = await self._api("GET", f"/api/v2/conversations/{session.platform_session_id}/messages")
        except Exception as e:
            logger.warning(
                "GENESYS_HISTORY_FALLBACK",
                extra={"session_id": conversation_id, "error": str(e)}
            )
            return list(session.messages)

        return [
            ConversationMessage(
                message_id=str(entry.get("id")),
                session_id=conversation_id,
                timestamp=_parse_timestamp(entry.get("timestamp")),
                speaker=map_speaker(entry.get("fromUser")),
                content=entry.get("textBody") or entry.get("body") or "",
                metadata={"genesys_message_id": entry.get("id"), "message_type": entry.get("messageType")},
            )
            for entry in (body or {}).get("entities", [])
        ]

    def health_details(self) -> Dict[str, Any]:
        return {
            "environment": self.environment,
            "authenticated": self._access_token is not None,
        }

    async def cleanup(self) -> None:
        await super().cleanup()
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._access_token = None
