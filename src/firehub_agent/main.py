import asyncio
import logging
from contextlib import aclosing, asynccontextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, AsyncIterator

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError

from .agent import FireHubAgentService, format_sse, get_agent_service
from .agent.events import KEEPALIVE_FRAME, TERMINAL_EVENTS, ErrorEvent
from .models import ChatRequest, parse_chat_request, validation_error_message
from .services.token_store import close_token_store, get_token_store_async
from .settings import get_settings

STREAM_ERROR_MESSAGE = "An error occurred while the agent was processing the request"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def setup_server_logging() -> logging.Logger:
    """Configure the package logger (console + rotating file) and return the server logger."""
    settings = get_settings()
    settings.log_dir.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("firehub_agent")
    if not package_logger.handlers:
        package_logger.setLevel(settings.log_level)
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
        package_logger.addHandler(ch)

        fh = RotatingFileHandler(
            settings.log_dir / "server.log", maxBytes=5_000_000, backupCount=3
        )
        fh.setFormatter(fmt)
        package_logger.addHandler(fh)

    return logging.getLogger("firehub_agent.server")


def _cors_origins_list(origins: str) -> list[str]:
    """Parse CORS_ORIGINS into a list."""
    if not origins or origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in origins.split(",") if o.strip()]


LOGGER = setup_server_logging()
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the token store (Redis when configured) at startup; close it on shutdown."""
    store = await get_token_store_async()
    LOGGER.info("Token store ready: %s", type(store).__name__)
    LOGGER.info("Chat endpoint: POST http://%s:%s/agent/chat", settings.host, settings.port)

    yield

    LOGGER.info("Shutting down...")
    await close_token_store()


app = FastAPI(
    title="Smart Fire Hub AI Agent",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

router = APIRouter(prefix="/agent")


@router.get("/health")
async def health() -> dict[str, Any]:
    """Health check for load balancers and monitoring."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


async def _event_stream(
    service: FireHubAgentService, chat_request: ChatRequest, abort: asyncio.Event
) -> AsyncIterator[str]:
    """SSE body: keep-alive comment first, then one frame per event.

    If the response is torn down before the run finished (client disconnect),
    the abort event is set so the run stops its provider request.
    """
    yield KEEPALIVE_FRAME
    finished = False
    terminal_sent = False
    try:
        async with aclosing(service.stream_chat(chat_request, abort)) as events:
            async for event in events:
                if isinstance(event, TERMINAL_EVENTS):
                    terminal_sent = True
                yield format_sse(event)
        finished = True
    except Exception as e:
        LOGGER.exception("Chat stream failed: %s", e)
        finished = True
        if not terminal_sent:
            yield format_sse(ErrorEvent(message=STREAM_ERROR_MESSAGE))
    finally:
        if not finished:
            LOGGER.info("Client disconnected before the run finished; aborting")
            abort.set()


@router.post("/chat")
async def chat(request: Request) -> Response:
    """SSE chat endpoint.

    Expected Input (JSON):
        {
            "message": str - user query text (required),
            "userId": number - caller's user id (required),
            "sessionId": str - provider session to resume,
            "model", "maxTurns", "systemPrompt", "temperature",
            "maxTokens", "sessionMaxTokens" - optional overrides
        }

    Response Format:
        ``text/event-stream`` starting with a ``:ok`` comment, then frames
        ``event: <type>`` / ``data: <json>`` for init, text, tool_use,
        tool_result, turn, done and error events.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        LOGGER.error("Invalid chat payload (not JSON): %s", e)
        return JSONResponse(status_code=400, content={"error": "Invalid JSON payload"})

    try:
        chat_request = parse_chat_request(payload)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": validation_error_message(e)})

    service = get_agent_service()
    try:
        # Storage failures surface as a 500 before streaming starts.
        await service.get_token_store()
    except Exception as e:
        LOGGER.exception("Chat setup failed: %s", e)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    abort = asyncio.Event()
    body = _event_stream(service, chat_request, abort)

    LOGGER.info(
        "Chat start user_id=%s session_id=%s", chat_request.user_id, chat_request.session_id
    )
    return StreamingResponse(body, media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/sessions")
async def sessions() -> dict[str, Any]:
    """Session listing lives in the backend API; kept for client compatibility."""
    return {"message": "Session listing is managed by firehub-api", "sessions": []}


@router.get("/history/{session_id}")
async def history(session_id: str) -> list[dict[str, str]]:
    """Return the session's prior user/assistant turns ([] for unknown sessions)."""
    messages = await asyncio.to_thread(get_agent_service().read_history, session_id)
    return [m.to_dict() for m in messages]


app.include_router(router)


def run() -> None:
    """Serve the app with uvicorn using host/port from settings."""
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
