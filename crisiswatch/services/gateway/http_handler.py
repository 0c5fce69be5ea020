"""HTTP and WebSocket surface.

Provides:
- /health, /ready probes
- Twilio and Genesys webhook receivers
- /ws for direct WebSocket conversations, /ws/events for observers
- /api conversation, processing and runtime-config endpoints

Run with:
    python -m crisiswatch.services.gateway.http_handler
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from twilio.twiml.voice_response import VoiceResponse

from crisiswatch.shared.events import EventType
from crisiswatch.shared.models import ConversationStatus, PlatformType
from crisiswatch.services.channel_adapters import (
    AdapterNotReadyError,
    InboundEvent,
    InvalidSignatureError,
    MalformedEventError,
    TwilioAdapter,
    WebhookEvent,
)
from crisiswatch.services.channel_adapters.genesys_adapter import GenesysAdapter
from .app import AdapterNotEnabledError, ConversationAnalyzerApp

logger = logging.getLogger(__name__)

# Message content stays off the observer stream
OBSERVER_EVENTS = frozenset(EventType) - {EventType.MESSAGE_RECEIVED}


class ConfigUpdate(BaseModel):
    """Runtime-tunable processing settings; omitted fields are unchanged."""
    debounce_seconds: Optional[float] = Field(default=None, ge=0)
    reprocess_suppression_seconds: Optional[float] = Field(default=None, ge=0)
    auto_case_creation: Optional[bool] = None
    auto_send_resources: Optional[bool] = None
    crisis_sentiment_threshold: Optional[float] = Field(default=None, ge=-1, le=1)
    negative_sentiment_threshold: Optional[float] = Field(default=None, ge=-1, le=1)
    crisis_indicator_threshold: Optional[int] = Field(default=None, ge=1)
    session_eviction_grace_seconds: Optional[float] = Field(default=None, ge=0)


class OutboundMessage(BaseModel):
    text: str = Field(min_length=1)


def create_app(pipeline: Optional[ConversationAnalyzerApp] = None) -> FastAPI:
    """Build the FastAPI application around a pipeline instance."""
    pipeline = pipeline or ConversationAnalyzerApp()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await pipeline.start()
        try:
            yield
        finally:
            await pipeline.stop()

    app = FastAPI(title="crisiswatch", lifespan=lifespan)
    app.state.pipeline = pipeline

    async def dispatch(event: InboundEvent) -> Dict[str, Any]:
        try:
            await pipeline.process_inbound_event(event)
        except AdapterNotEnabledError:
            raise HTTPException(status_code=404, detail=f"{event.platform.value} adapter not enabled")
        except InvalidSignatureError:
            raise HTTPException(status_code=403, detail="Invalid signature")
        except MalformedEventError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"status": "received", "event": event.event.value}

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------

    @app.get("/health")
    async def health():
        status = await pipeline.health_status()
        return JSONResponse(
            {"status": "healthy" if status["healthy"] else "unhealthy", "service": "crisiswatch", **status},
            status_code=200 if status["healthy"] else 503,
        )

    @app.get("/ready")
    async def ready():
        if not pipeline.started or not pipeline.session_store.accepting:
            return JSONResponse({"status": "not_ready"}, status_code=503)
        return {"status": "ready"}

    # ------------------------------------------------------------------
    # Twilio webhooks (form-encoded)
    # ------------------------------------------------------------------

    async def twilio_event(request: Request, default: Optional[WebhookEvent]) -> InboundEvent:
        data = dict(await request.form())
        kind = TwilioAdapter.determine_event(data) or default
        if kind is None:
            raise HTTPException(status_code=400, detail="Unrecognised Twilio callback")
        return InboundEvent(
            platform=PlatformType.TWILIO,
            event=kind,
            data=data,
            signature=request.headers.get("X-Twilio-Signature"),
            url=str(request.url),
        )

    @app.post("/webhooks/twilio/voice")
    async def twilio_voice(request: Request):
        await dispatch(await twilio_event(request, None))
        return Response(content=str(VoiceResponse()), media_type="application/xml")

    @app.post("/webhooks/twilio/sms")
    async def twilio_sms(request: Request):
        return await dispatch(await twilio_event(request, WebhookEvent.MESSAGE_RECEIVED))

    @app.post("/webhooks/twilio/recording")
    async def twilio_recording(request: Request):
        return await dispatch(await twilio_event(request, WebhookEvent.RECORDING_AVAILABLE))

    # ------------------------------------------------------------------
    # Genesys webhooks (JSON)
    # ------------------------------------------------------------------

    async def genesys_event(request: Request, default: Optional[WebhookEvent]) -> InboundEvent:
        try:
            data = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        kind = GenesysAdapter.determine_event(data) or default
        if kind is None:
            raise HTTPException(status_code=400, detail="Unrecognised Genesys eventType")
        return InboundEvent(platform=PlatformType.GENESYS, event=kind, data=data)

    @app.post("/webhooks/genesys/conversation")
    async def genesys_conversation(request: Request):
        return await dispatch(await genesys_event(request, None))

    @app.post("/webhooks/genesys/message")
    async def genesys_message(request: Request):
        return await dispatch(await genesys_event(request, WebhookEvent.MESSAGE_RECEIVED))

    # ------------------------------------------------------------------
    # WebSockets
    # ------------------------------------------------------------------

    @app.websocket("/ws")
    async def conversation_socket(websocket: WebSocket):
        try:
            adapter = pipeline.get_adapter(PlatformType.WEBSOCKET)
        except AdapterNotEnabledError:
            await websocket.close(code=1008)
            return

        await websocket.accept()
        try:
            client = await adapter.connect(websocket)
        except AdapterNotReadyError as e:
            await websocket.send_json({"type": "error", "message": str(e)})
            await websocket.close(code=1013)
            return

        try:
            while True:
                await adapter.handle_client_message(client, await websocket.receive_text())
        except WebSocketDisconnect as e:
            await adapter.disconnect(client, e.code)

    @app.websocket("/ws/events")
    async def event_stream(websocket: WebSocket):
        subscription = pipeline.event_bus.subscribe("ws-observer", OBSERVER_EVENTS)

        async def forward() -> None:
            while True:
                event = await subscription.get()
                if event is None:
                    return
                await websocket.send_json(event.to_payload())

        async def until_disconnect() -> None:
            # Observers only listen; anything they send is discarded
            try:
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                return

        try:
            await websocket.accept()
            tasks = {asyncio.create_task(forward()), asyncio.create_task(until_disconnect())}
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.debug("EVENT_STREAM_OBSERVER_CLOSED", extra={"error": str(task.exception())})
        finally:
            pipeline.event_bus.unsubscribe(subscription)

    # ------------------------------------------------------------------
    # Conversation API
    # ------------------------------------------------------------------

    def conversation_or_404(session_id: str):
        session = pipeline.get_conversation(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        return session

    @app.get("/api/conversations")
    async def list_conversations(status: Optional[str] = None):
        status_filter = None
        if status is not None:
            try:
                status_filter = ConversationStatus(status)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        sessions = pipeline.list_conversations(status_filter)
        return {
            "conversations": [s.to_dict(include_messages=False) for s in sessions],
            "total": len(sessions),
        }

    @app.get("/api/conversations/{session_id}")
    async def get_conversation(session_id: str):
        return conversation_or_404(session_id).to_dict()

    @app.get("/api/conversations/{session_id}/analysis")
    async def get_analysis(session_id: str):
        session = conversation_or_404(session_id)
        if session.analysis is None:
            raise HTTPException(status_code=404, detail="No analysis available yet")
        return session.analysis.to_dict()

    @app.post("/api/conversations/{session_id}/analyze")
    async def analyze_conversation(session_id: str):
        conversation_or_404(session_id)
        result = await pipeline.reanalyze(session_id)
        if result is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        return result.to_dict()

    @app.get("/api/conversations/{session_id}/messages")
    async def get_messages(session_id: str):
        conversation_or_404(session_id)
        history = await pipeline.get_history(session_id)
        return {"messages": [m.to_dict() for m in history], "total": len(history)}

    @app.post("/api/conversations/{session_id}/messages")
    async def send_message(session_id: str, body: OutboundMessage):
        session = conversation_or_404(session_id)
        if session.status.is_terminal:
            raise HTTPException(status_code=409, detail="Conversation has ended")
        try:
            await pipeline.send_message(session_id, body.text)
        except AdapterNotEnabledError:
            raise HTTPException(status_code=404, detail=f"{session.platform_type.value} adapter not enabled")
        except Exception as e:
            logger.error("OUTBOUND_SEND_FAILED", extra={"session_id": session_id, "error": str(e)})
            raise HTTPException(status_code=502, detail="Platform rejected the message")
        return {"status": "sent"}

    @app.get("/api/processing/status")
    async def processing_status():
        return {
            "scheduler": pipeline.scheduler.status(),
            "sessions": pipeline.session_store.stats(),
            "case_service": await pipeline.case_service_health(),
        }

    # ------------------------------------------------------------------
    # Runtime configuration
    # ------------------------------------------------------------------

    @app.get("/api/config")
    async def get_config():
        return pipeline.settings.current.to_dict()

    @app.patch("/api/config")
    async def update_config(body: ConfigUpdate):
        changes = body.model_dump(exclude_none=True)
        if not changes:
            raise HTTPException(status_code=400, detail="No settings supplied")
        try:
            updated = pipeline.settings.update(**changes)
        except (KeyError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        return updated.to_dict()

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        create_app(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
    )
