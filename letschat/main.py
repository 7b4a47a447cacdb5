"""
FastAPI application bootstrap with: \n
- Logging configured from settings \n
- Lifespan-managed initialization (schema creation, legacy key backfill, expired session cleanup) \n
- CORS configured for the frontend \n
- Exception handlers rendering every failure into the response envelope \n
- Authenticated WebSocket endpoint for realtime delivery \n

Environment contract (from `settings`): \n
- FRONTEND_URL: allowed CORS origin(s), comma separated. \n
- LOG_LEVEL: root log level. \n

Run with ``uvicorn letschat.main:app``.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, Cookie, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from letschat.api.fast_api import router
from letschat.api import realtime
from letschat.database.config.config import settings
from letschat.database.config.connection_engine import connection_engine, metadata
from letschat.database.core import auth as auth_service
from letschat.database.core.conversation_encryption import migrate_existing_conversations
from letschat.database.core.errors import ChatServiceError
import letschat.database.entities  # noqa: F401  (registers the models on `metadata`)

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("letschat")
"""Application logger; module loggers live below it (`letschat.*`)."""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    App lifespan manager.

    Notes
    ------------
    - On startup (before yielding):
        * Create missing tables.
        * Give legacy conversations without an encryption key a fresh one.
        * Purge expired login sessions.
    - On shutdown (after yielding):
        * Dispose of the engine's connection pool.
    """
    metadata.create_all(connection_engine)
    backfilled = migrate_existing_conversations()
    purged = auth_service.cleanup_expired_sessions()
    logger.info("Startup complete (keys backfilled: %d, expired sessions purged: %d)", backfilled, purged)
    try:
        yield
    finally:
        connection_engine.dispose()
        logger.info("App shutting down")


# Instantiate the FastAPI app with lifespan handler
app = FastAPI(title="LetsChat", lifespan=lifespan)
"""FastAPI application object; `lifespan` prepares the database on startup."""


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


@app.exception_handler(ChatServiceError)
async def service_error_handler(request: Request, exc: ChatServiceError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail)
    return error_response(exc.status_code, exc.code, exc.detail)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return error_response(400, "VALIDATION_ERROR", message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "INTERNAL_ERROR", "Internal server error")


# -----------------------
# CORS configuration
# -----------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------
# API routes
# -----------------------
app.include_router(router)


@app.get("/health")
async def health():
    """Liveness probe with realtime connection statistics."""
    return {
        "success": True,
        "data": {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "realtime": realtime.manager.get_stats(),
        },
    }


@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    token_cookie: Optional[str] = Cookie(None, alias="token"),
):
    """
    Authenticated WebSocket endpoint.

    Auth
    ----
    - `token` query parameter, else the `token` cookie.
    - The token must resolve to a live session, otherwise the connection is
      closed with 1008 (Policy Violation).

    Protocol
    --------
    - Upon connect: sends ``connected``, delivers queued events and, for the
      user's first socket, broadcasts ``user_status`` online.
    - Then reads ``{"event", "data"}`` frames (see `letschat.api.realtime`).
    - On disconnect: clears typing state and, for the last socket, marks the
      user offline and broadcasts it.
    """
    await websocket.accept()
    user = auth_service.verify_token(token=token or token_cookie)
    if not user:
        await websocket.close(code=1008)
        return

    user_id = user["id"]
    manager = realtime.manager
    first = await manager.connect(user_id, websocket)
    await websocket.send_json(jsonable_encoder(realtime.frame("connected", {"user": user})))
    await manager.flush_queue(user_id)
    if first:
        auth_service.set_user_status(user_id=user_id, status="online")
        await realtime.publish_user_status(user_id, "online")

    try:
        while True:
            message = await websocket.receive_json()
            await realtime.handle_client_event(user_id, websocket, message)
    except WebSocketDisconnect:
        logger.debug("%s disconnected", user["username"])
    except (KeyError, ValueError):
        # binary frames carry no "text" key
        logger.info("Closing socket of %s after a non-JSON frame", user["username"])
        await websocket.close(code=1003)
    finally:
        await realtime.publish_typing_stopped(user_id)
        if await manager.disconnect(user_id, websocket):
            auth_service.set_user_status(user_id=user_id, status="offline")
            await realtime.publish_user_status(user_id, "offline")
