from __future__ import annotations


class RagCoreError(Exception):
    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.error_code = error_code


class IndexUnavailableError(RagCoreError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            message=f"Vector index is unavailable: {detail}",
            error_code="INDEX_UNAVAILABLE",
        )


class EmbeddingFailureError(RagCoreError):
    def __init__(self, detail: str, batch_size: int) -> None:
        super().__init__(
            message=f"Embedding batch of {batch_size} text(s) failed: {detail}",
            error_code="EMBEDDING_FAILURE",
        )
        self.batch_size = batch_size


class RetrievalTransportError(RagCoreError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            message=f"Retrieval request failed: {detail}",
            error_code="RETRIEVAL_TRANSPORT",
        )


class ModelProtocolViolationError(RagCoreError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            message=f"Model response violated the tool protocol: {detail}",
            error_code="MODEL_PROTOCOL_VIOLATION",
        )


class GenerationFailedError(RagCoreError):
    def __init__(self, reason: str) -> None:
        super().__init__(
            message=f"Generation failed: {reason}",
            error_code="GENERATION_FAILED",
        )
        self.reason = reason


class ModelUnavailableError(RagCoreError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            message=f"Model request failed: {detail}",
            error_code="MODEL_UNAVAILABLE",
        )


class EventPublishError(RagCoreError):
    def __init__(self, topic: str, detail: str) -> None:
        super().__init__(
            message=f"Publishing to '{topic}' failed: {detail}",
            error_code="EVENT_PUBLISH_FAILED",
        )
        self.topic = topic
