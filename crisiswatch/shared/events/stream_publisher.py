"""Forwards pipeline events to a Kinesis stream.

Downstream consumers (dashboards, case-management integrations) read the
stream rather than calling this service. When the stream is unavailable
the event is written to the log instead so nothing is silently lost.
"""
import asyncio
import json
import logging
import os
from typing import Iterable, Optional

from .bus import ConversationEvent, EventBus, EventType, Subscription

logger = logging.getLogger(__name__)

# Message content stays in-process; only state changes are forwarded
DEFAULT_FORWARDED_EVENTS = frozenset({
    EventType.SESSION_CREATED,
    EventType.SESSION_ENDED,
    EventType.ANALYSIS_UPDATED,
    EventType.SUPERVISOR_ALERT,
    EventType.CALL_ESCALATE,
    EventType.CASE_UPDATED,
    EventType.FOLLOWUP_SCHEDULED,
    EventType.RESOURCES_SEND,
    EventType.ADAPTER_ERROR,
})


class EventStreamPublisher:
    """Publishes ConversationEvents to Kinesis."""

    def __init__(
        self,
        stream_name: str = "crisiswatch-conversation-events",
        enabled: bool = True,
        region: Optional[str] = None,
        event_types: Iterable[EventType] = DEFAULT_FORWARDED_EVENTS,
    ):
        self.stream_name = stream_name
        self.enabled = enabled
        self.region = region or os.getenv("AWS_REGION", "us-east-1")
        self.event_types = frozenset(event_types)
        self._kinesis_client = None
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None
        self.published_count = 0

        logger.info(
            "EVENT_STREAM_PUBLISHER_INITIALIZED",
            extra={"stream_name": stream_name, "enabled": enabled}
        )

    @property
    def kinesis_client(self):
        """Lazy initialization of Kinesis client."""
        if self._kinesis_client is None and self.enabled:
            try:
                import boto3
                self._kinesis_client = boto3.client("kinesis", region_name=self.region)
            except Exception as e:
                logger.error("KINESIS_CLIENT_INIT_FAILED", extra={"error": str(e)})
        return self._kinesis_client

    def publish(self, event: ConversationEvent) -> bool:
        """Put one event on the stream. Never raises."""
        if not self.enabled:
            return False

        payload = event.to_payload()

        try:
            if self.kinesis_client is None:
                logger.warning(
                    "EVENT_STREAM_FALLBACK_LOG",
                    extra={"event_id": event.event_id, "payload": json.dumps(payload, default=str)}
                )
                return False

            response = self.kinesis_client.put_record(
                StreamName=self.stream_name,
                Data=json.dumps(payload, default=str),
                PartitionKey=event.session_id,
            )
            self.published_count += 1

            logger.info(
                "EVENT_STREAM_RECORD_PUBLISHED",
                extra={
                    "event_id": event.event_id,
                    "event_type": event.event_type.value,
                    "shard_id": response.get("ShardId"),
                }
            )
            return True

        except Exception as e:
            logger.error(
                "EVENT_STREAM_PUBLISH_FAILED",
                extra={"event_id": event.event_id, "error": str(e)}
            )
            return False

    async def start(self, event_bus: EventBus) -> None:
        if not self.enabled or self._task is not None:
            return
        self._subscription = event_bus.subscribe("event-stream", self.event_types)
        self._task = asyncio.create_task(self._forward())

    async def _forward(self) -> None:
        while True:
            event = await self._subscription.get()
            if event is None:
                break
            # boto3 is blocking
            await asyncio.to_thread(self.publish, event)

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except asyncio.TimeoutError:
                logger.warning("EVENT_STREAM_DRAIN_TIMEOUT", extra={"pending": self._subscription.pending()})
            self._task = None
