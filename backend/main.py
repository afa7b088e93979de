from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging
import socket as socketlib

import config
config.setup_logging()

from socket_manager import socket_manager

logger = logging.getLogger(__name__)


def get_local_ip():
    try:
        s = socketlib.socket(socketlib.AF_INET, socketlib.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway = socket_manager.get_gateway()
    local_ip = get_local_ip()
    logger.info("Quiz server running on port %d", config.PORT)
    logger.info("Host screen connects to ws://%s:%d/ws/<client-id>", local_ip, config.PORT)
    logger.info("Game PIN: %s (%d questions, %dms per question)",
                gateway.session.pin, gateway.session.total_questions, gateway.session.time_limit_ms)
    yield
    gateway.controller.cancel_timers()
    logger.info("Shutting down quiz server")


app = FastAPI(title="PIN Quiz Server", lifespan=lifespan)


@app.get("/system/info")
async def get_system_info():
    return {"ip": get_local_ip()}


@app.get("/session")
async def get_session():
    """Read-only view of the live session."""
    return socket_manager.get_gateway().session.snapshot()


@app.websocket("/ws/{client_id}")
async def websocket_endpoint(websocket: WebSocket, client_id: str):
    await socket_manager.connect(websocket, client_id)


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
    socket_manager.allowed_origins = origins
else:
    local_ip = get_local_ip()
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        f"http://{local_ip}:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Quiz server is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT)
