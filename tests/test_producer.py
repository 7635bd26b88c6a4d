from __future__ import annotations

import pytest
from aiokafka.errors import KafkaConnectionError

from indexing_service.infrastructure.producer import RedpandaIndexingProducer
from shared.exceptions import EventPublishError


class _FakeKafkaProducer:
    def __init__(self, error: Exception | None = None) -> None:
        self._error = error
        self.sent: list[dict] = []

    async def send_and_wait(self, **kwargs):
        if self._error:
            raise self._error
        self.sent.append(kwargs)


def _producer(fake: _FakeKafkaProducer) -> RedpandaIndexingProducer:
    producer = RedpandaIndexingProducer(bootstrap_servers="localhost:9092")
    producer._producer = fake
    return producer


async def test_indexed_event_is_keyed_by_document():
    fake = _FakeKafkaProducer()

    await _producer(fake).publish_document_indexed(
        owner_id="owner-1",
        document_id="doc-1",
        collection="documents",
        chunk_count=3,
        embedding_model="text-embedding-3-small",
    )

    assert fake.sent[0]["topic"] == "document.indexed"
    assert fake.sent[0]["key"] == "doc-1"
    assert fake.sent[0]["value"]["chunk_count"] == 3


async def test_broker_error_becomes_event_publish_error():
    fake = _FakeKafkaProducer(error=KafkaConnectionError("no brokers"))

    with pytest.raises(EventPublishError) as exc_info:
        await _producer(fake).publish_indexing_failed(
            owner_id="owner-1",
            document_id="doc-1",
            error_code="EMBEDDING_FAILURE",
            error_message="503",
        )

    assert exc_info.value.topic == "document.indexing_failed"
    assert exc_info.value.error_code == "EVENT_PUBLISH_FAILED"
