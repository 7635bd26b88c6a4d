from shared.events.base import BaseEvent
from shared.events.document_events import (
    DocumentDeletedEvent,
    DocumentIndexedEvent,
    DocumentIndexingFailedEvent,
    DocumentSavedEvent,
)

__all__ = [
    "BaseEvent",
    "DocumentSavedEvent",
    "DocumentDeletedEvent",
    "DocumentIndexedEvent",
    "DocumentIndexingFailedEvent",
]
