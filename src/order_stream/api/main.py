"""FastAPI application streaming order changes to WebSocket subscribers"""

import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ..cdc.manager import ChangeStreamManager
from ..config.settings import build_settings
from ..connectors.base import ChangeLogConnector, create_connector

settings = build_settings()

logger.remove()
logger.add(sys.stderr, level=settings.log_level)

_connector: Optional[ChangeLogConnector] = None
_stream_manager: Optional[ChangeStreamManager] = None


def get_stream_manager() -> ChangeStreamManager:
    """Get the running change stream manager"""
    if _stream_manager is None:
        raise HTTPException(status_code=503, detail="Change stream not started")
    return _stream_manager


async def start_stream(connector: ChangeLogConnector) -> ChangeStreamManager:
    """Set up capture (if enabled) and start the pipeline over `connector`"""
    global _connector, _stream_manager

    if settings.cdc_auto_setup:
        connector.setup()

    manager = ChangeStreamManager.from_settings(connector, connector, settings)
    await manager.start()

    _connector = connector
    _stream_manager = manager
    return manager


async def stop_stream() -> None:
    global _connector, _stream_manager

    if _stream_manager is not None:
        await _stream_manager.stop()
        _stream_manager = None
    if _connector is not None:
        _connector.close()
        _connector = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting change stream on {settings.database_type}")
    await start_stream(create_connector(settings))
    try:
        yield
    finally:
        logger.info("Shutting down gracefully...")
        await stop_stream()


app = FastAPI(
    title="Realtime Orders API",
    description="Streams order table changes to WebSocket subscribers",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    manager = _stream_manager
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "websocket_clients": manager.broadcaster.subscriber_count if manager else 0,
        "change_listener_active": bool(manager and manager.is_running)
    }


@app.get("/cdc/status")
async def get_cdc_status():
    """Get change stream status"""
    manager = get_stream_manager()
    status = manager.get_status()
    if _connector is not None:
        status['source'] = _connector.get_status()
    return {
        "status": "success",
        **status
    }


@app.get("/cdc/stats")
async def get_cdc_stats():
    """Get change log statistics"""
    manager = get_stream_manager()
    stats = await manager.get_stats()
    if stats is None:
        raise HTTPException(status_code=500, detail="Could not read change log statistics")
    return {
        "status": "success",
        **stats
    }


@app.websocket("/ws")
async def order_stream(websocket: WebSocket):
    """Send INITIAL_DATA, then every order change, until the client leaves"""
    manager = _stream_manager
    if manager is None:
        await websocket.close(code=1013)
        return

    await websocket.accept()
    try:
        subscriber = await manager.attach(websocket)
    except Exception as e:
        logger.error(f"Could not attach WebSocket client: {e}")
        return

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket client error: {e}")
    finally:
        await manager.detach(subscriber)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, reload=settings.api_reload)
