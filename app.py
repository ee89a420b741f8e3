import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import redis_backend
from constants import ALLOWED_ORIGINS
from errors import ChatError
from gateway import Gateway
from routers.messages import messages_router
from logging_config import get_logger, setup_logging

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if await redis_backend.ping():
        logger.info("Redis client connected successfully")
    yield
    await redis_backend.close()


app = FastAPI(lifespan=lifespan)

# Cookies carry the session, so origins must be explicit
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(messages_router)

# One gateway per process: it owns every socket, the presence table and
# the per-connection room sets.
gateway = Gateway(redis_backend)


@app.exception_handler(ChatError)
async def chat_error_handler(_request: Request, exc: ChatError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Socket endpoint; the session cookie is checked before the handshake completes."""
    await gateway.serve(websocket)


logger.info("FastAPI application initialized")
