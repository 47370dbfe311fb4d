"""
FastAPI Backend Server

Exposes the conversation session commands and the live signal feed as REST
endpoints for a web UI (avatar, status badges, transcript) to consume.
"""

import asyncio
import json
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from mentorai.config import settings
from mentorai.logger import get_logger, init_logging
from mentorai.messages import msg
from mentorai.realtime.events import Event, NotificationEvent, SignalEvent
from mentorai.realtime.voice_agent import VoiceAssistant, VoiceAssistantConfig

init_logging()
logger = get_logger(__name__)

STREAM_KEEPALIVE_S = 15.0


# Pydantic models for API
class SubmitRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)


class SignalsResponse(BaseModel):
    state: str
    is_listening: bool
    is_speaking: bool
    is_processing: bool
    last_transcript: str
    last_response: str
    last_error: Optional[dict] = None


class CommandResponse(BaseModel):
    accepted: bool
    signals: SignalsResponse


# Global assistant instance
assistant: Optional[VoiceAssistant] = None


def create_assistant() -> VoiceAssistant:
    """Build the assistant for the configured transport, text-only if none is usable."""
    try:
        return VoiceAssistant()
    except ValueError as e:
        logger.warning(f"Voice transport unavailable ({e}), serving text-only")
        return VoiceAssistant(VoiceAssistantConfig(text_only=True))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup resources."""
    global assistant

    assistant = create_assistant()
    logger.info(f"Assistant ready ({assistant.orchestrator.channel_kind.value})")

    yield

    # Release microphone/speaker on shutdown
    if assistant is not None:
        await assistant.end()
    assistant = None


# Rate limiting middleware
class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Simple in-memory rate limiting middleware.
    Limits requests per IP address within a time window.
    """

    def __init__(self, app, requests_limit: int = 60, window_seconds: int = 60):
        super().__init__(app)
        self.requests_limit = requests_limit
        self.window_seconds = window_seconds
        self.request_counts: Dict[str, list] = defaultdict(list)

    async def dispatch(self, request: Request, call_next):
        # Health checks and the long-lived stream are not rate limited
        if request.url.path in ("/api/health", "/api/session/stream"):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()

        current_time = time.time()
        cutoff_time = current_time - self.window_seconds
        self.request_counts[client_ip] = [
            ts for ts in self.request_counts[client_ip] if ts > cutoff_time
        ]

        if len(self.request_counts[client_ip]) >= self.requests_limit:
            return JSONResponse(
                status_code=429,
                content={
                    "detail": msg("error.rate_limited"),
                    "retry_after": self.window_seconds
                },
                headers={"Retry-After": str(self.window_seconds)}
            )

        self.request_counts[client_ip].append(current_time)
        return await call_next(request)


# Create FastAPI app
app = FastAPI(
    title="MentorAI API",
    description="Session control and live signals for the MentorAI voice tutor",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    RateLimitMiddleware,
    requests_limit=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window,
)

# CORS middleware - uses configurable origins from settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_assistant() -> VoiceAssistant:
    """Get the assistant instance."""
    if assistant is None:
        raise HTTPException(status_code=503, detail=msg("error.assistant_not_ready"))
    return assistant


def current_signals(target: VoiceAssistant) -> dict:
    return target.snapshot.to_dict()


def format_sse(event: Event) -> Optional[str]:
    """Render a feed event as one server-sent event frame."""
    if isinstance(event, SignalEvent):
        payload = {"type": "signals", "data": event.snapshot.to_dict()}
    elif isinstance(event, NotificationEvent) and event.notification is not None:
        note = event.notification
        payload = {
            "type": "notification",
            "data": {
                "kind": note.kind,
                "level": note.level,
                "title": note.title,
                "message": note.message,
            },
        }
    else:
        return None
    return f"data: {json.dumps(payload)}\n\n"


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "ready": assistant is not None}


@app.get("/api/welcome")
async def welcome_message():
    """Return a short welcome message for the UI hero."""
    return {"message": msg("welcome.message")}


@app.post("/api/session/begin", response_model=CommandResponse)
async def begin_session():
    """Start listening (or connect the external agent)."""
    target = get_assistant()
    accepted = await target.begin()
    return {"accepted": accepted, "signals": current_signals(target)}


@app.post("/api/session/submit", response_model=CommandResponse)
async def submit_message(request: SubmitRequest):
    """Ask a typed or suggested question."""
    target = get_assistant()
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="Message must not be blank")
    accepted = await target.submit(request.message)
    return {"accepted": accepted, "signals": current_signals(target)}


@app.post("/api/session/end", response_model=CommandResponse)
async def end_session():
    """Stop the conversation and release all audio resources."""
    target = get_assistant()
    await target.end()
    return {"accepted": True, "signals": current_signals(target)}


@app.get("/api/session/signals", response_model=SignalsResponse)
async def get_signals():
    """Current signal snapshot."""
    return current_signals(get_assistant())


@app.get("/api/session/stream")
async def stream_signals():
    """Server-sent events: signal snapshots and notifications as they happen."""
    target = get_assistant()

    async def generate() -> AsyncGenerator[str, None]:
        feed = target.subscribe()
        try:
            yield format_sse(SignalEvent(snapshot=target.snapshot))
            while True:
                try:
                    event = await asyncio.wait_for(feed.get(), timeout=STREAM_KEEPALIVE_S)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                frame = format_sse(event)
                if frame:
                    yield frame
        finally:
            target.unsubscribe(feed)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api_server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
