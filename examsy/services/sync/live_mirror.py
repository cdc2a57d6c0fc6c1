"""
Live Mirror Synchronizer

Keeps an in-memory copy of the students, sessions and rooms collections:
- One subscription and one consumer task per collection
- Every snapshot replaces the collection mapping wholesale
- Observers are notified synchronously after each replacement
- Initial load completes with the first student snapshot
"""

import asyncio
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Generic, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ...core.config import Settings, settings as default_settings
from ...core.store import RemoteStore, Snapshot, Subscription
from ...schemas.exam import ExamSession, Room, Student

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class MirrorSnapshot:
    """A collection mapping as it stood right after one remote snapshot."""
    collection: str
    documents: Mapping[str, BaseModel]
    version: int


MirrorObserver = Callable[[MirrorSnapshot], None]


class CollectionMirror(Generic[ModelT]):
    """Ordered mapping of one collection, replaced on every snapshot."""

    def __init__(self, collection: str, model: Type[ModelT], key_field: str):
        self.collection = collection
        self.model = model
        self.key_field = key_field
        self._documents: Dict[str, ModelT] = {}
        self._version = 0
        self._waiters: List[asyncio.Future] = []

    @property
    def documents(self) -> Mapping[str, ModelT]:
        return MappingProxyType(self._documents)

    @property
    def version(self) -> int:
        """Number of snapshots applied so far; 0 until the first one arrives."""
        return self._version

    @property
    def loaded(self) -> bool:
        return self._version > 0

    def values(self) -> List[ModelT]:
        return list(self._documents.values())

    def get(self, key: Optional[str]) -> Optional[ModelT]:
        if not key:
            return None
        return self._documents.get(key)

    def replace(self, snapshot: Snapshot) -> MirrorSnapshot:
        documents: Dict[str, ModelT] = {}
        for document_id, data in snapshot.items():
            try:
                documents[document_id] = self.model.model_validate(
                    {**(data or {}), self.key_field: document_id}
                )
            except ValidationError as e:
                logger.warning(f"Skipping undecodable {self.collection}/{document_id}: {e}")

        self._documents = documents
        self._version += 1
        return MirrorSnapshot(self.collection, self.documents, self._version)

    def wake_waiters(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    async def wait_for(
        self,
        predicate: Callable[[Mapping[str, ModelT]], bool] = lambda documents: True,
        timeout: Optional[float] = None
    ) -> Mapping[str, ModelT]:
        """Wait until the mirror is loaded and ``predicate`` holds for its mapping."""

        async def _wait():
            while not (self.loaded and predicate(self.documents)):
                waiter = asyncio.get_running_loop().create_future()
                self._waiters.append(waiter)
                await waiter
            return self.documents

        return await asyncio.wait_for(_wait(), timeout)


class LiveMirror:
    """Mirrors the three exam collections into local, read-only state."""

    def __init__(self, store: RemoteStore, config: Optional[Settings] = None):
        config = config or default_settings
        self.store = store
        self.students: CollectionMirror[Student] = CollectionMirror(
            config.STUDENTS_COLLECTION, Student, "nis"
        )
        self.sessions: CollectionMirror[ExamSession] = CollectionMirror(
            config.SESSIONS_COLLECTION, ExamSession, "id"
        )
        self.rooms: CollectionMirror[Room] = CollectionMirror(
            config.ROOMS_COLLECTION, Room, "id"
        )
        self._observers: List[MirrorObserver] = []
        self._subscriptions: List[Subscription] = []
        self._tasks: List[asyncio.Task] = []
        self._loaded = asyncio.Event()
        self._started = False
        self._stopped = False

    @property
    def collections(self) -> List[CollectionMirror]:
        return [self.students, self.sessions, self.rooms]

    @property
    def initial_load_complete(self) -> bool:
        return self._loaded.is_set()

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    def add_observer(self, observer: MirrorObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that removes it."""
        self._observers.append(observer)

        def remove():
            if observer in self._observers:
                self._observers.remove(observer)

        return remove

    async def start(self) -> None:
        if self._started:
            logger.warning("Live mirror already started")
            return
        self._started = True

        for mirror in self.collections:
            subscription = self.store.subscribe(mirror.collection)
            self._subscriptions.append(subscription)
            self._tasks.append(asyncio.create_task(
                self._consume(mirror, subscription),
                name=f"mirror:{mirror.collection}"
            ))

        logger.info(f"Live mirror started for {len(self._tasks)} collections")

    async def wait_until_loaded(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._loaded.wait(), timeout)

    async def stop(self) -> None:
        """Unsubscribe every listener. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True

        for subscription in self._subscriptions:
            subscription.cancel()

        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Live mirror stopped")

    async def _consume(self, mirror: CollectionMirror, subscription: Subscription) -> None:
        async for snapshot in subscription:
            if self._stopped:
                break
            self._apply(mirror, snapshot)

    def _apply(self, mirror: CollectionMirror, snapshot: Snapshot) -> None:
        result = mirror.replace(snapshot)

        if mirror is self.students and not self._loaded.is_set():
            self._loaded.set()
            logger.info(f"Initial load complete with {len(result.documents)} students")

        for observer in list(self._observers):
            try:
                observer(result)
            except Exception as e:
                logger.error(f"Mirror observer failed on '{mirror.collection}' snapshot: {e}")

        mirror.wake_waiters()
