"""
Main application initialization and configuration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from sqlalchemy import text

from matchqueue.api.routes import queue
from matchqueue.core.redis import close_redis_connections, health_check_redis
from matchqueue.dependencies import db_dependency, pairing_engine_dependency
from matchqueue.services.notifications.pubsub import PUBSUB_BACKEND, get_pubsub
from matchqueue.services.queue.sweeper import QueueSweeper
from matchqueue.services.socketio import socketio_server

logger = logging.getLogger(__name__)


async def start_queue_sweeper(app: FastAPI):
    """Start expiring stale queue entries."""
    app.state.queue_sweeper = QueueSweeper(pairing_engine_dependency())
    app.state.queue_sweeper.start()


async def stop_background_services(app: FastAPI):
    """Stop the sweeper, disconnect sockets and release pub/sub connections."""
    sweeper = getattr(app.state, "queue_sweeper", None)
    if sweeper:
        await sweeper.stop()
    await socketio_server.shutdown_event()
    await get_pubsub().close()
    await close_redis_connections()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await start_queue_sweeper(app)
    try:
        yield
    finally:
        await stop_background_services(app)


# Initialize FastAPI application
app = FastAPI(title="MatchQueue API", lifespan=lifespan)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["https://localhost", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount Socket.io server
socketio_server.mount_to_fastapi(app, path="/ws")

# Include routers
app.include_router(queue.router)


@app.get("/")
def read_root():
    """Return a welcome message at the root endpoint."""
    return {"message": "Welcome to MatchQueue API"}


@app.get("/api")
@app.get("/api/")
def read_api_root():
    """Return a message with available API endpoints."""
    return {
        "message": "MatchQueue API - Available endpoints: /api/queue, /api/queue/initiate, "
        "/api/queue/dequeue, /api/queue/position, /ws (Socket.IO)"
    }


@app.get("/api/health")
async def health_check(db: Session = Depends(db_dependency)):
    """Health check endpoint reporting the status of each backing service."""
    try:
        db.execute(text("SELECT 1"))
        database_status = {"status": "connected", "error": None}
    except Exception as e:
        database_status = {"status": "disconnected", "error": str(e)}

    if PUBSUB_BACKEND == "redis":
        pubsub_status = await health_check_redis()
    else:
        pubsub_status = {"status": "in-process", "error": None}

    healthy = database_status["status"] == "connected" and pubsub_status["error"] is None

    return {
        "status": "healthy" if healthy else "degraded",
        "services": {
            "api": "online",
            "database": database_status,
            "pubsub": pubsub_status,
            "socketio": "online" if socketio_server.online else "offline",
        },
    }
