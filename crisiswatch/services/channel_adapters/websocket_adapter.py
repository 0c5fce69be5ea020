"""Direct WebSocket adapter.

Browser or softphone clients connect to the gateway's ``/ws`` endpoint and
speak a small JSON protocol:

    {"type": "start_conversation", "userInfo": {...}}
    {"type": "send_message", "content": "..."}
    {"type": "end_conversation"}
    {"type": "join_conversation", "conversationId": "...", "agentInfo": {...}}

The client that starts a conversation is the caller; clients that join
are agents. A disconnect removes the participant but does not end the
conversation.
"""
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

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
    InboundEventRejected,
    MalformedEventError,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

CLIENT_MESSAGE_TYPES: Dict[str, WebhookEvent] = {
    "start_conversation": WebhookEvent.CONVERSATION_STARTED,
    "send_message": WebhookEvent.MESSAGE_RECEIVED,
    "end_conversation": WebhookEvent.CONVERSATION_ENDED,
    "join_conversation": WebhookEvent.PARTICIPANT_JOINED,
}


class ClientConnection(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


@dataclass
class WebSocketClient:
    client_id: str
    connection: ClientConnection
    session_id: Optional[str] = None
    role: Speaker = Speaker.CALLER

    @property
    def participant_id(self) -> str:
        prefix = "caller" if self.role == Speaker.CALLER else "agent"
        return f"{prefix}_{self.client_id}"


class WebSocketAdapter(ChannelAdapter):
    """Adapter for clients connected directly over WebSocket."""

    platform_type = PlatformType.WEBSOCKET

    def __init__(self, session_store: SessionStore, max_clients: int = 500):
        super().__init__(session_store, {"max_clients": max_clients})
        self.max_clients = max_clients
        self.clients: Dict[str, WebSocketClient] = {}

    async def initialize(self) -> None:
        self.initialized = True
        logger.info("WEBSOCKET_ADAPTER_INITIALIZED", extra={"max_clients": self.max_clients})

    # ------------------------------------------------------------------
    # Connection lifecycle (driven by the gateway)
    # ------------------------------------------------------------------

    async def connect(self, connection: ClientConnection) -> WebSocketClient:
        if not self.listening:
            raise AdapterNotReadyError("WebSocket adapter is not accepting connections")
        if len(self.clients) >= self.max_clients:
            raise AdapterNotReadyError("WebSocket client limit reached")

        client = WebSocketClient(client_id=uuid.uuid4().hex[:12], connection=connection)
        self.clients[client.client_id] = client
        logger.info(
            "WEBSOCKET_CLIENT_CONNECTED",
            extra={"client_id": client.client_id, "client_count": len(self.clients)}
        )
        await self._send(client, {
            "type": "connected",
            "clientId": client.client_id,
            "message": "Connected to conversation analyzer",
        })
        return client

    async def disconnect(self, client: WebSocketClient, code: Optional[int] = None) -> None:
        self.clients.pop(client.client_id, None)
        if client.session_id:
            session = self.session_store.get(client.session_id)
            if session is not None and not session.status.is_terminal:
                self.session_store.remove_participant(client.session_id, client.participant_id)
                await self._broadcast(
                    client.session_id,
                    {"type": "participant_left", "participantId": client.participant_id},
                    exclude=client.client_id,
                )
        logger.info(
            "WEBSOCKET_CLIENT_DISCONNECTED",
            extra={"client_id": client.client_id, "code": code, "client_count": len(self.clients)}
        )

    async def handle_client_message(self, client: WebSocketClient, raw: str) -> None:
        """Parse one client frame and dispatch it; protocol errors go back to the client."""
        try:
            message = json.loads(raw)
        except ValueError:
            await self._send(client, {"type": "error", "message": "Invalid message format"})
            return
        if not isinstance(message, dict):
            await self._send(client, {"type": "error", "message": "Invalid message format"})
            return

        event_kind = CLIENT_MESSAGE_TYPES.get(message.get("type"))
        if event_kind is None:
            await self._send(client, {
                "type": "error",
                "message": "Unknown message type",
                "receivedType": message.get("type"),
            })
            return

        event = InboundEvent(
            platform=self.platform_type,
            event=event_kind,
            data={**message, "client_id": client.client_id},
        )
        try:
            await self.process_inbound_event(event)
        except InboundEventRejected as e:
            await self._send(client, {"type": "error", "message": str(e)})

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def handle_event(self, event: InboundEvent) -> None:
        client = self.clients.get(event.data.get("client_id", ""))
        if client is None:
            raise MalformedEventError("Unknown client")

        handlers = {
            WebhookEvent.CONVERSATION_STARTED: self._start_conversation,
            WebhookEvent.MESSAGE_RECEIVED: self._client_message,
            WebhookEvent.CONVERSATION_ENDED: self._end_conversation,
            WebhookEvent.PARTICIPANT_JOINED: self._join_conversation,
        }
        await handlers[event.event](client, event.data)

    async def _start_conversation(self, client: WebSocketClient, data: Dict[str, Any]) -> None:
        user_info = data.get("userInfo") or {}
        client.role = Speaker.CALLER
        session = self.session_store.create_session(
            self.platform_type,
            f"ws_{client.client_id}_{uuid.uuid4().hex[:6]}",
            metadata={"client_id": client.client_id},
            participants=[
                ConversationParticipant(
                    participant_id=client.participant_id,
                    role=Speaker.CALLER,
                    name=user_info.get("name"),
                    phone_number=user_info.get("phone"),
                    email=user_info.get("email"),
                    metadata={"client_id": client.client_id},
                ),
            ],
        )
        if session is None:
            await self._send(client, {"type": "error", "message": "Conversation could not be started"})
            return

        client.session_id = session.session_id
        await self._send(client, {"type": "conversation_started", "conversationId": session.session_id})
        logger.info(
            "WEBSOCKET_CONVERSATION_STARTED",
            extra={
                "client_id": client.client_id,
                "session_id": session.session_id,
                "phone_hash": hash_contact(user_info.get("phone")),
            }
        )

    async def _client_message(self, client: WebSocketClient, data: Dict[str, Any]) -> None:
        if not client.session_id:
            await self._send(client, {
                "type": "error",
                "message": "No active conversation. Start a conversation first.",
            })
            return
        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            raise MalformedEventError("Missing required fields: content")

        message = await self.session_store.append_message(
            client.session_id,
            client.role,
            content,
            metadata={"client_id": client.client_id, "message_type": data.get("messageType", "text")},
        )
        if message is None:
            await self._send(client, {"type": "error", "message": "Conversation is not active"})
            return
        await self._broadcast(
            client.session_id,
            {"type": "message_received", "message": message.to_dict()},
            exclude=client.client_id,
        )

    async def _end_conversation(self, client: WebSocketClient, data: Dict[str, Any]) -> None:
        session_id = client.session_id
        if not session_id:
            return
        if self.session_store.set_status(session_id, ConversationStatus.ENDED):
            await self._broadcast(session_id, {"type": "conversation_ended", "conversationId": session_id})
        client.session_id = None

    async def _join_conversation(self, client: WebSocketClient, data: Dict[str, Any]) -> None:
        conversation_id = data.get("conversationId")
        session = self.session_store.get(conversation_id) if conversation_id else None
        if session is None or session.status.is_terminal:
            await self._send(client, {"type": "error", "message": "Conversation not found"})
            return

        agent_info = data.get("agentInfo") or {}
        client.role = Speaker.AGENT
        client.session_id = session.session_id
        self.session_store.add_participant(session.session_id, ConversationParticipant(
            participant_id=client.participant_id,
            role=Speaker.AGENT,
            name=agent_info.get("name"),
            metadata={"client_id": client.client_id},
        ))

        await self._send(client, {
            "type": "conversation_joined",
            "conversationId": session.session_id,
            "history": [m.to_dict() for m in session.messages],
        })
        await self._broadcast(
            session.session_id,
            {
                "type": "participant_joined",
                "participant": {"id": client.participant_id, "type": "agent", "name": agent_info.get("name")},
            },
            exclude=client.client_id,
        )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_message(self, conversation_id: str, text: str) -> None:
        if self.session_store.get(conversation_id) is None:
            raise KeyError(f"Unknown conversation: {conversation_id}")
        message = await self.session_store.append_message(
            conversation_id, Speaker.AGENT, text, metadata={"outbound": True}
        )
        await self._broadcast(conversation_id, {
            "type": "agent_message",
            "conversationId": conversation_id,
            "message": text,
            "timestamp": message.timestamp.isoformat() if message else None,
        })

    async def _send(self, client: WebSocketClient, payload: Dict[str, Any]) -> None:
        try:
            await client.connection.send_json(payload)
        except Exception as e:
            logger.warning(
                "WEBSOCKET_SEND_FAILED",
                extra={"client_id": client.client_id, "error": str(e)}
            )

    async def _broadcast(self, session_id: str, payload: Dict[str, Any], exclude: Optional[str] = None) -> None:
        for client in list(self.clients.values()):
            if client.session_id == session_id and client.client_id != exclude:
                await self._send(client, payload)

    def health_details(self) -> Dict[str, Any]:
        return {"connected_clients": len(self.clients), "max_clients": self.max_clients}

    async def stop_listening(self) -> None:
        await super().stop_listening()
        for client in list(self.clients.values()):
            try:
                await client.connection.close(code=1001)
            except Exception as e:
                logger.debug("WEBSOCKET_CLOSE_FAILED", extra={"client_id": client.client_id, "error": str(e)})
        self.clients.clear()
