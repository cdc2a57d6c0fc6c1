from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
import logging
from contextlib import asynccontextmanager
from typing import Optional

from examsy.core.config import Settings, settings
from examsy.core.credentials import MemoryLocalStorage
from examsy.core.runtime import ExamsyRuntime
from examsy.core.store import RemoteStore
from examsy.api.v1 import auth, data

logger = logging.getLogger(__name__)


def configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if config.DEBUG else config.LOG_LEVEL.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(
    config: Optional[Settings] = None,
    store: Optional[RemoteStore] = None,
    storage: Optional[MemoryLocalStorage] = None
) -> FastAPI:
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(config)
        runtime = ExamsyRuntime(config, store=store, storage=storage)
        app.state.runtime = runtime
        await runtime.start()

        yield

        await runtime.stop()

    app = FastAPI(
        title="Examsy Sync API",
        description="Local bridge between the exam UI and the live-synchronized exam data",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(data.router, prefix="/api/v1", tags=["data"])
    app.include_router(auth.router, prefix="/api/v1/auth", tags=["session"])

    @app.websocket("/ws/live")
    async def live_updates(websocket: WebSocket):
        runtime: ExamsyRuntime = websocket.app.state.runtime
        await runtime.connection_manager.connect(
            websocket,
            runtime.live_updates.initial_messages(runtime.mirror, runtime.state_machine.state)
        )
        await runtime.live_updates.handle_websocket_messages(websocket)

    @app.get("/")
    async def root():
        return {"message": "Examsy Sync API", "status": "running"}

    @app.get("/health")
    async def health_check():
        runtime: ExamsyRuntime = app.state.runtime
        return {
            "status": "healthy" if runtime.mirror.running else "stopped",
            "version": "1.0.0",
            "initial_load_complete": runtime.mirror.initial_load_complete,
            "websocket_connections": runtime.connection_manager.get_active_connections_count()
        }

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "status_code": exc.status_code}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        logger.error(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "status_code": 500}
        )

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info" if not settings.DEBUG else "debug"
    )
