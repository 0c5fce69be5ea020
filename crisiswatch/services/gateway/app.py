"""Application wiring: builds the pipeline and owns its lifecycle.

startup:  validate config -> initialize adapters -> start router and
          stream publisher -> adapters start listening
shutdown: stop accepting sessions -> adapters stop listening -> drain
          router and scheduler -> close HTTP clients
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from crisiswatch.shared.config import ServiceConfig, SettingsStore
from crisiswatch.shared.events import EventBus, EventStreamPublisher
from crisiswatch.shared.models import ConversationSession, ConversationStatus, PlatformType, ProcessingResult
from crisiswatch.shared.utils import configure_pii_salt, is_pii_salt_configured
from crisiswatch.services.analysis_service import (
    ConversationAnalyzer,
    HttpSentimentScorer,
    ResilientSentimentScorer,
    SentimentScorer,
)
from crisiswatch.services.case_service import CaseRecordClient
from crisiswatch.services.channel_adapters import (
    ChannelAdapter,
    GenesysAdapter,
    InboundEvent,
    TwilioAdapter,
    WebSocketAdapter,
)
from crisiswatch.services.processing_service import ActionEngine, ProcessingScheduler, SessionRouter
from crisiswatch.services.session_service import SessionStore

logger = logging.getLogger(__name__)

DEV_PII_SALT = "default_dev_salt_change_in_production_32chars"


class AdapterNotEnabledError(KeyError):
    """No adapter is running for the requested platform."""


def build_adapters(config: ServiceConfig, session_store: SessionStore) -> Dict[PlatformType, ChannelAdapter]:
    adapters: Dict[PlatformType, ChannelAdapter] = {}
    if config.twilio_enabled:
        adapters[PlatformType.TWILIO] = TwilioAdapter(
            session_store,
            account_sid=config.twilio_account_sid,
            auth_token=config.twilio_auth_token,
            webhook_url=config.twilio_webhook_url,
            validate_signatures=config.twilio_validate_signatures,
        )
    if config.genesys_enabled:
        adapters[PlatformType.GENESYS] = GenesysAdapter(
            session_store,
            client_id=config.genesys_client_id,
            client_secret=config.genesys_client_secret,
            environment=config.genesys_environment,
            webhook_url=config.genesys_webhook_url,
        )
    if config.websocket_enabled:
        adapters[PlatformType.WEBSOCKET] = WebSocketAdapter(session_store)
    return adapters


class ConversationAnalyzerApp:
    """The running pipeline."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        settings: Optional[SettingsStore] = None,
        adapters: Optional[Dict[PlatformType, ChannelAdapter]] = None,
        case_client: Optional[CaseRecordClient] = None,
        sentiment_scorer: Optional[SentimentScorer] = None,
        stream_publisher: Optional[EventStreamPublisher] = None,
    ):
        self.config = config or ServiceConfig.from_env()
        self.config.validate()

        if not is_pii_salt_configured():
            configure_pii_salt(self.config.pii_salt or DEV_PII_SALT)

        self.settings = settings or SettingsStore()
        self.event_bus = EventBus()
        self.session_store = SessionStore(event_bus=self.event_bus)

        if sentiment_scorer is None:
            primary = None
            if self.config.sentiment_api_url:
                primary = HttpSentimentScorer(
                    self.config.sentiment_api_url,
                    api_key=self.config.sentiment_api_key,
                    timeout_seconds=self.config.sentiment_api_timeout_seconds,
                )
            sentiment_scorer = ResilientSentimentScorer(primary)
        self.sentiment_scorer = sentiment_scorer

        if case_client is None and self.config.case_api_url:
            case_client = CaseRecordClient(
                self.config.case_api_url,
                api_key=self.config.case_api_key,
                timeout_seconds=self.config.case_api_timeout_seconds,
            )
        self.case_client = case_client

        self.analyzer = ConversationAnalyzer(scorer=self.sentiment_scorer, settings=self.settings)
        self.action_engine = ActionEngine(
            self.session_store,
            case_client=self.case_client,
            settings=self.settings,
            event_bus=self.event_bus,
        )
        self.scheduler = ProcessingScheduler(
            self.analyzer,
            self.action_engine,
            self.session_store,
            settings=self.settings,
            event_bus=self.event_bus,
        )
        self.router = SessionRouter(self.session_store, self.scheduler, self.event_bus, settings=self.settings)
        self.stream_publisher = stream_publisher or EventStreamPublisher(
            stream_name=self.config.event_stream_name,
            enabled=self.config.event_stream_enabled,
            region=self.config.aws_region,
        )

        self.adapters = adapters if adapters is not None else build_adapters(self.config, self.session_store)
        self.started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.started:
            return

        for platform, adapter in list(self.adapters.items()):
            try:
                await adapter.initialize()
            except Exception as e:
                # A failed channel is dropped; the others keep serving
                logger.error(
                    "ADAPTER_INITIALIZATION_FAILED",
                    extra={"platform": platform.value, "error": str(e)}
                )
                del self.adapters[platform]

        await self.router.start()
        await self.stream_publisher.start(self.event_bus)

        for adapter in self.adapters.values():
            await adapter.start_listening()

        self.started = True
        logger.info(
            "APPLICATION_STARTED",
            extra={
                "platforms": [p.value for p in self.adapters],
                "environment": self.config.environment,
            }
        )

    async def stop(self, timeout: float = 30.0) -> None:
        if not self.started:
            return
        logger.info("APPLICATION_STOPPING", extra={"active_sessions": self.session_store.active_count})

        self.session_store.stop_accepting()
        for platform, adapter in self.adapters.items():
            try:
                await adapter.cleanup()
            except Exception as e:
                logger.error("ADAPTER_CLEANUP_FAILED", extra={"platform": platform.value, "error": str(e)})

        await self.router.stop(timeout=timeout)
        await self.scheduler.shutdown(timeout=timeout)
        await self.stream_publisher.stop()
        self.session_store.cancel_evictions()

        await self.sentiment_scorer.close()
        if self.case_client is not None:
            await self.case_client.close()
        self.event_bus.close()

        self.started = False
        logger.info("APPLICATION_STOPPED", extra={"passes_completed": self.scheduler.passes_completed})

    # ------------------------------------------------------------------
    # Operations used by the HTTP surface
    # ------------------------------------------------------------------

    def get_adapter(self, platform: PlatformType) -> ChannelAdapter:
        adapter = self.adapters.get(platform)
        if adapter is None:
            raise AdapterNotEnabledError(platform.value)
        return adapter

    async def process_inbound_event(self, event: InboundEvent) -> None:
        await self.get_adapter(event.platform).process_inbound_event(event)

    def get_conversation(self, session_id: str) -> Optional[ConversationSession]:
        return self.session_store.get(session_id)

    def list_conversations(self, status: Optional[ConversationStatus] = None) -> List[ConversationSession]:
        return sorted(self.session_store.list_sessions(status), key=lambda s: s.start_time, reverse=True)

    async def reanalyze(self, session_id: str) -> Optional[ProcessingResult]:
        return await self.scheduler.request_reanalysis(session_id)

    async def send_message(self, session_id: str, text: str) -> None:
        session = self.session_store.get(session_id)
        if session is None:
            raise KeyError(session_id)
        await self.get_adapter(session.platform_type).send_message(session_id, text)

    async def get_history(self, session_id: str):
        session = self.session_store.get(session_id)
        if session is None:
            raise KeyError(session_id)
        adapter = self.adapters.get(session.platform_type)
        if adapter is None:
            return list(session.messages)
        return await adapter.get_conversation_history(session_id)

    async def health_status(self) -> Dict[str, Any]:
        adapter_health: Dict[str, Any] = {}
        for platform, adapter in self.adapters.items():
            try:
                adapter_health[platform.value] = await adapter.health_check()
            except Exception as e:
                adapter_health[platform.value] = {"healthy": False, "details": {"error": str(e)}}

        healthy = (
            self.started
            and bool(adapter_health)
            and all(h["healthy"] for h in adapter_health.values())
        )
        return {
            "healthy": healthy,
            "adapters": adapter_health,
            "sessions": self.session_store.stats(),
            "processing": self.scheduler.status(),
            "router": {"running": self.router.running, "active_actors": self.router.active_actors},
            "event_subscribers": self.event_bus.subscriber_count,
        }

    async def case_service_health(self) -> Dict[str, Any]:
        if self.case_client is None:
            return {"healthy": False, "details": {"reason": "not configured"}}
        try:
            return await asyncio.wait_for(self.case_client.health_check(), timeout=self.config.case_api_timeout_seconds)
        except asyncio.TimeoutError:
            return {"healthy": False, "details": {"reason": "timeout"}}
