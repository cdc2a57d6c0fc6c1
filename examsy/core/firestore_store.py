"""Cloud Firestore adapter built on the Firebase Admin SDK."""

import asyncio
import logging
from typing import Any, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore

from .store import (
    Document, PatchEntry, RemoteStore, StoreBatchLimitError, StoreError,
    StoreNotFoundError, StoreTransportError, Subscription
)

logger = logging.getLogger(__name__)


class FirestoreStore(RemoteStore):
    """
    Remote store backed by Cloud Firestore.

    Snapshot listeners run on the Firestore watch thread; every snapshot is
    handed over to the event loop that opened the subscription. Writes use the
    blocking client and run in a worker thread so the loop is never blocked.
    """

    def __init__(
        self,
        credentials_path: str = "",
        project_id: Optional[str] = None,
        batch_limit: int = 500
    ):
        self.batch_limit = batch_limit
        self._app = self._initialize_firebase(credentials_path, project_id)
        self._client = firestore.client(self._app)

    @staticmethod
    def _initialize_firebase(credentials_path: str, project_id: Optional[str]) -> Any:
        """Reuse the default Firebase app or initialize it."""
        try:
            app = firebase_admin.get_app()
            logger.info("Firebase app already initialized")
            return app
        except ValueError:
            pass

        options = {"projectId": project_id} if project_id else None
        if credentials_path:
            cred = credentials.Certificate(credentials_path)
        else:
            logger.warning("FIREBASE_CREDENTIALS_PATH not configured, using application default credentials")
            cred = credentials.ApplicationDefault()

        app = firebase_admin.initialize_app(cred, options)
        logger.info("Firebase app initialized successfully")
        return app

    def subscribe(self, collection: str) -> Subscription:
        loop = asyncio.get_running_loop()
        subscription = Subscription(collection)

        def on_snapshot(docs, changes, read_time):
            if subscription.closed:
                return
            snapshot = {doc.id: doc.to_dict() or {} for doc in docs}
            try:
                loop.call_soon_threadsafe(subscription.push, snapshot)
            except RuntimeError:
                logger.warning(f"Dropped '{collection}' snapshot: event loop is closed")

        watch = self._client.collection(collection).on_snapshot(on_snapshot)
        subscription.set_cancel_callback(watch.unsubscribe)
        logger.info(f"Subscribed to collection '{collection}'")
        return subscription

    async def set_merge(self, collection: str, document_id: str, document: Document) -> None:
        ref = self._client.collection(collection).document(document_id)
        await self._run(ref.set, document, merge=True, collection=collection, document_id=document_id)

    async def delete(self, collection: str, document_id: str) -> None:
        ref = self._client.collection(collection).document(document_id)
        await self._run(ref.delete, collection=collection, document_id=document_id)

    async def batch_update(self, collection: str, entries: List[PatchEntry]) -> None:
        if len(entries) > self.batch_limit:
            raise StoreBatchLimitError(
                f"Batch of {len(entries)} writes exceeds the limit of {self.batch_limit}",
                collection=collection
            )

        batch = self._client.batch()
        for document_id, patch in entries:
            batch.update(self._client.collection(collection).document(document_id), patch)
        await self._run(batch.commit, collection=collection)

    async def _run(self, func, *args, collection: str, document_id: Optional[str] = None, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except StoreError:
            raise
        except Exception as e:
            if getattr(e, "code", None) == 404:
                raise StoreNotFoundError(
                    str(e), collection=collection, document_id=document_id, original_exception=e
                ) from e
            raise StoreTransportError(
                str(e), collection=collection, document_id=document_id, original_exception=e
            ) from e
