"""
Wiring of the client core: store, mirror, dispatcher, credential and session.
"""
import logging
from typing import Callable, List, Optional

from fastapi import Request

from .config import Settings
from .credentials import FileLocalStorage, MemoryLocalStorage, SessionContext
from .memory_store import MemoryStore
from .store import RemoteStore
from ..services.session_state import SessionStateMachine
from ..services.sync.dispatcher import ActionDispatcher
from ..services.sync.live_mirror import LiveMirror
from ..websocket.live_updates import ConnectionManager, LiveUpdateService

logger = logging.getLogger(__name__)


def build_store(config: Settings) -> RemoteStore:
    if config.STORE_BACKEND == "memory":
        logger.warning("Using the in-memory store; data is not shared with other clients")
        return MemoryStore()

    # Imported lazily so the memory backend works without Firebase credentials
    from .firestore_store import FirestoreStore
    return FirestoreStore(
        credentials_path=config.FIREBASE_CREDENTIALS_PATH,
        project_id=config.FIREBASE_PROJECT_ID,
        batch_limit=config.FIRESTORE_BATCH_LIMIT
    )


class ExamsyRuntime:
    """Owns the core components for the lifetime of the host process."""

    def __init__(
        self,
        config: Settings,
        store: Optional[RemoteStore] = None,
        storage: Optional[MemoryLocalStorage] = None
    ):
        self.settings = config
        self.store = store or build_store(config)
        self.storage = storage or FileLocalStorage(config.CREDENTIAL_STORE_PATH)
        self.context = SessionContext(self.storage, config.CREDENTIAL_STORAGE_KEY)
        self.mirror = LiveMirror(self.store, config)
        self.dispatcher = ActionDispatcher(self.store, config)
        self.state_machine = SessionStateMachine(self.dispatcher, self.mirror, self.context)
        self.connection_manager = ConnectionManager()
        self.live_updates = LiveUpdateService(self.connection_manager)
        self._detach: List[Callable[[], None]] = []

    async def start(self) -> None:
        self._detach = self.live_updates.attach(self.mirror, self.state_machine)
        await self.mirror.start()
        self.state_machine.initialize()
        logger.info(f"Runtime started with session state {self.state_machine.state.view.value}")

    async def stop(self) -> None:
        for detach in self._detach:
            detach()
        self._detach = []
        self.state_machine.close()
        await self.mirror.stop()
        await self.connection_manager.close()


def get_runtime(request: Request) -> ExamsyRuntime:
    return request.app.state.runtime
