"""
In-process document store with the same guarantees as the Firestore adapter.

Used by the test suite and by the host bridge when STORE_BACKEND=memory.
"""
import copy
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from .store import (
    Document, PatchEntry, RemoteStore, Snapshot, StoreNotFoundError,
    StoreTransportError, Subscription
)

logger = logging.getLogger(__name__)


class MemoryStore(RemoteStore):
    """Dictionary-backed store that publishes a full snapshot on every change."""

    def __init__(self, initial: Optional[Dict[str, Snapshot]] = None):
        self._collections: Dict[str, Snapshot] = defaultdict(dict)
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)
        # Simulates a network partition: every write fails while set
        self.offline = False

        for collection, documents in (initial or {}).items():
            self._collections[collection] = copy.deepcopy(documents)

    def documents(self, collection: str) -> Snapshot:
        """Current contents of a collection (a copy)."""
        return copy.deepcopy(self._collections[collection])

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscriptions[collection])

    def subscribe(self, collection: str) -> Subscription:
        subscription = Subscription(collection)
        subscription.set_cancel_callback(lambda: self._unsubscribe(collection, subscription))
        self._subscriptions[collection].append(subscription)
        subscription.push(self.documents(collection))
        return subscription

    def _unsubscribe(self, collection: str, subscription: Subscription) -> None:
        if subscription in self._subscriptions[collection]:
            self._subscriptions[collection].remove(subscription)

    def _publish(self, collection: str) -> None:
        for subscription in list(self._subscriptions[collection]):
            subscription.push(self.documents(collection))

    def _check_online(self, collection: str, document_id: Optional[str] = None) -> None:
        if self.offline:
            raise StoreTransportError(
                "Store is offline",
                collection=collection,
                document_id=document_id
            )

    async def set_merge(self, collection: str, document_id: str, document: Document) -> None:
        self._check_online(collection, document_id)
        existing = self._collections[collection].setdefault(document_id, {})
        existing.update(copy.deepcopy(document))
        self._publish(collection)

    async def delete(self, collection: str, document_id: str) -> None:
        self._check_online(collection, document_id)
        if self._collections[collection].pop(document_id, None) is not None:
            self._publish(collection)

    async def batch_update(self, collection: str, entries: List[PatchEntry]) -> None:
        self._check_online(collection)
        documents = self._collections[collection]

        missing = [document_id for document_id, _ in entries if document_id not in documents]
        if missing:
            raise StoreNotFoundError(
                f"No document to update: {', '.join(missing)}",
                collection=collection,
                document_id=missing[0]
            )

        for document_id, patch in entries:
            documents[document_id].update(copy.deepcopy(patch))

        if entries:
            self._publish(collection)
