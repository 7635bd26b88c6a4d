from __future__ import annotations

import json

import structlog
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from indexing_service.domain.interfaces import IndexingEventPublisherPort
from shared.events.base import BaseEvent
from shared.events.document_events import DocumentIndexedEvent, DocumentIndexingFailedEvent
from shared.exceptions import EventPublishError

logger = structlog.get_logger(__name__)


class RedpandaIndexingProducer(IndexingEventPublisherPort):
    def __init__(self, bootstrap_servers: str) -> None:
        self._bootstrap_servers = bootstrap_servers
        self._producer: AIOKafkaProducer | None = None

    async def start(self) -> None:
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._bootstrap_servers,
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda k: k.encode("utf-8") if k else None,
            acks="all",
            enable_idempotence=True,
        )
        await self._producer.start()
        logger.info("producer.started", bootstrap_servers=self._bootstrap_servers)

    async def stop(self) -> None:
        if self._producer:
            await self._producer.stop()
            logger.info("producer.stopped")

    async def publish_document_indexed(
        self,
        owner_id: str,
        document_id: str,
        collection: str,
        chunk_count: int,
        embedding_model: str,
    ) -> None:
        event = DocumentIndexedEvent(
            owner_id=owner_id,
            document_id=document_id,
            collection=collection,
            chunk_count=chunk_count,
            embedding_model=embedding_model,
        )
        await self._send(event, key=document_id)

    async def publish_indexing_failed(
        self,
        owner_id: str,
        document_id: str,
        error_code: str,
        error_message: str,
    ) -> None:
        event = DocumentIndexingFailedEvent(
            owner_id=owner_id,
            document_id=document_id,
            error_code=error_code,
            error_message=error_message,
        )
        await self._send(event, key=document_id)

    async def _send(self, event: BaseEvent, key: str) -> None:
        if not self._producer:
            raise RuntimeError("Producer is not started.")

        try:
            await self._producer.send_and_wait(
                topic=event.topic,
                value=event.model_dump(mode="json"),
                key=key,
            )
        except KafkaError as exc:
            logger.error("event.publish.failed", topic=event.topic, key=key, error=str(exc))
            raise EventPublishError(event.topic, str(exc)) from exc

        logger.info(
            "event.published",
            topic=event.topic,
            event_id=str(event.event_id),
            key=key,
        )
