"""
Remote document store boundary.

The exam client talks to a shared, eventually-consistent document store through
four primitives:

- subscribe: live full snapshots of one collection
- set_merge: idempotent create-or-update that preserves unspecified fields
- delete: idempotent removal
- batch_update: all-or-nothing patch of several existing documents

Adapters raise StoreError subclasses on failure. Callers above the adapter
decide how to surface them.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Snapshot = Dict[str, Document]
PatchEntry = Tuple[str, Document]


class StoreErrorCategory:
    """Error categories for store failures."""
    TRANSPORT = "transport"
    NOT_FOUND = "not_found"
    BATCH_LIMIT = "batch_limit"
    UNKNOWN = "unknown"


class StoreError(Exception):
    """Base exception for remote store failures."""

    def __init__(
        self,
        message: str,
        category: str = StoreErrorCategory.UNKNOWN,
        collection: Optional[str] = None,
        document_id: Optional[str] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.collection = collection
        self.document_id = document_id
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'category': self.category,
            'collection': self.collection,
            'document_id': self.document_id,
            'timestamp': self.timestamp.isoformat(),
        }


class StoreTransportError(StoreError):
    """Network, offline or permission failures."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=StoreErrorCategory.TRANSPORT, **kwargs)


class StoreNotFoundError(StoreError):
    """A batch patch referenced a document that does not exist."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=StoreErrorCategory.NOT_FOUND, **kwargs)


class StoreBatchLimitError(StoreError):
    """A batch holds more writes than the store accepts in one commit."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=StoreErrorCategory.BATCH_LIMIT, **kwargs)


_CLOSED = object()


class Subscription:
    """
    Channel of full snapshots for one collection.

    Snapshots are consumed with ``async for`` in the order they were pushed.
    ``cancel()`` is the unsubscribe token: it is idempotent, stops delivery and
    ends the iteration.
    """

    def __init__(self, collection: str, on_cancel: Optional[Callable[[], None]] = None):
        self.collection = collection
        self._on_cancel = on_cancel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def set_cancel_callback(self, on_cancel: Callable[[], None]) -> None:
        self._on_cancel = on_cancel

    def push(self, snapshot: Snapshot) -> None:
        """Queue a full snapshot. Ignored once cancelled."""
        if self._closed:
            return
        self._queue.put_nowait(snapshot)

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_cancel is not None:
            try:
                self._on_cancel()
            except Exception as e:
                logger.warning(f"Unsubscribe from '{self.collection}' failed: {e}")
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Snapshot:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item


class RemoteStore(ABC):
    """Adapter over the remote document store primitives."""

    @abstractmethod
    def subscribe(self, collection: str) -> Subscription:
        """Open a live subscription; the current state is delivered first."""

    @abstractmethod
    async def set_merge(self, collection: str, document_id: str, document: Document) -> None:
        """Create or update a document, keeping fields not present in ``document``."""

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""

    @abstractmethod
    async def batch_update(self, collection: str, entries: List[PatchEntry]) -> None:
        """Apply every patch or none of them."""
