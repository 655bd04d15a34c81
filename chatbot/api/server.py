"""
Chatbot API server.

Public endpoints drive the password + one-time-code flow; everything else requires a
bearer session credential and is served to the resolved caller only. Chat completions
are relayed to the client as Server-Sent Events.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import aclosing
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache, partial
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from chatbot.auth.codes import CodeStore, utcnow
from chatbot.auth.config import AuthConfig, load_auth_config
from chatbot.auth.deps import authenticate_request
from chatbot.auth.gate import CredentialGate
from chatbot.auth.models import AuthResult, AuthUser, IssuedChallenge
from chatbot.auth.rate_limit import get_code_limiter, get_login_limiter
from chatbot.auth.session import SessionGuard
from chatbot.chat.conversations import ConversationService
from chatbot.chat.history import HistoryRecorder
from chatbot.chat.relay import CompletionRelay
from chatbot.chat.types import ChatStreamEvent, ChatStreamRequest, ConversationCreateRequest
from chatbot.errors import NotFound, RateLimited, ServiceError, StoreFailure, Unauthorized, ValidationError
from chatbot.llm.client_streaming import DONE_MARKER, LLMConfig, load_llm_config, stream_completion
from chatbot.providers.mail_provider import mailer_from_env
from chatbot.providers.weather_provider import fetch_weather
from chatbot.storage.base import Store
from chatbot.storage.postgres import store_from_env

logger = logging.getLogger(__name__)

app = FastAPI(title="AI Chatbot API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[(os.getenv("FRONTEND_URL") or "http://localhost:3000").strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass(frozen=True)
class Services:
    """Process-wide collaborators for request handlers."""

    store: Store
    auth_cfg: AuthConfig
    llm_cfg: LLMConfig
    guard: SessionGuard
    gate: CredentialGate
    relay: CompletionRelay
    conversations: ConversationService


def build_services(store: Store, *, mailer=None, source=None, clock=utcnow) -> Services:
    auth_cfg = load_auth_config()
    llm_cfg = load_llm_config()
    guard = SessionGuard(auth_cfg)
    codes = CodeStore(store, ttl=timedelta(seconds=auth_cfg.otp_ttl_seconds), clock=clock)
    gate = CredentialGate(
        store=store,
        codes=codes,
        mailer=mailer if mailer is not None else mailer_from_env(),
        sessions=guard,
        cfg=auth_cfg,
        clock=clock,
    )
    relay = CompletionRelay(
        source=source if source is not None else partial(stream_completion, cfg=llm_cfg),
        recorder=HistoryRecorder(store, clock=clock),
    )
    return Services(
        store=store,
        auth_cfg=auth_cfg,
        llm_cfg=llm_cfg,
        guard=guard,
        gate=gate,
        relay=relay,
        conversations=ConversationService(store, clock=clock),
    )


@lru_cache(maxsize=1)
def _services() -> Services:
    store = store_from_env()
    if store is None:
        raise StoreFailure("Database not configured")
    return build_services(store)


def _error_response(exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "error": exc.code})


@app.exception_handler(ServiceError)
async def handle_service_error(_request: Request, exc: ServiceError) -> JSONResponse:
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.debug("Rejected request body: %s", exc.errors())
    return _error_response(ValidationError())


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


_PUBLIC_PATHS = {
    "/api/health",
    "/api/auth/register",
    "/api/auth/verify-otp",
    "/api/auth/resend-otp",
    "/api/auth/login",
    "/api/auth/verify-login-otp",
}


def _is_public_path(path: str) -> bool:
    # Health check + the code flow itself must be reachable without a session.
    return path.rstrip("/") in _PUBLIC_PATHS


@app.on_event("startup")
def _startup_maybe_migrate_db() -> None:
    """
    Optional dev behavior: auto-apply DB migrations when DB_AUTO_MIGRATE=1.

    This should never prevent the server from starting; failures are logged.
    """
    from chatbot.storage.migrate import maybe_auto_migrate

    did_attempt, msg = maybe_auto_migrate()
    if did_attempt:
        logger.info("DB migrations: %s", msg)
    else:
        logger.debug("DB migrations skipped: %s", msg)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests and enforce bearer auth on non-public paths."""
    start_time = time.time()
    path = request.url.path or ""
    logger.debug("%s %s", request.method, path)
    try:
        if request.method != "OPTIONS" and not _is_public_path(path):
            # Fail closed: anything not explicitly public requires auth.
            try:
                request.state.user = authenticate_request(request, _services().guard)
            except ServiceError as e:
                return _error_response(e)

        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, path, process_time, str(e))
        raise


def _current_user(request: Request) -> AuthUser:
    user = getattr(request.state, "user", None)
    if user is None:
        raise Unauthorized()
    return user


class RegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class CodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    otp_code: Optional[str] = Field(default=None, alias="otpCode")


class EmailRequest(BaseModel):
    email: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


def _limiter_key(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _check_limit(limiter, email: Optional[str]) -> None:
    key = _limiter_key(email)
    if not key:
        return
    allowed, _remaining = limiter.check_and_increment(key)
    if not allowed:
        logger.warning("Attempt limit reached for %s", key)
        raise RateLimited()


def _challenge_payload(services: Services, challenge: IssuedChallenge, payload: Dict[str, Any]) -> Dict[str, Any]:
    if services.auth_cfg.dev_expose_codes and not challenge.delivered:
        logger.warning("Code for %s was not delivered; echoing it in the response (dev mode)", challenge.email)
        payload["devCode"] = challenge.code
    return payload


def _session_payload(result: AuthResult) -> Dict[str, Any]:
    return {"message": result.message, "token": result.token, "user": result.identity.public_dict()}


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", "message": "AI Chatbot API is running", "timestamp": utcnow().isoformat()}


@app.post("/api/auth/register")
async def auth_register(req: RegisterRequest) -> Dict[str, Any]:
    services = _services()
    challenge = await services.gate.register(req.email, req.password, req.name)
    return _challenge_payload(
        services,
        challenge,
        {"message": "Registration successful! Check your email for verification code.", "email": challenge.email},
    )


@app.post("/api/auth/verify-otp")
async def auth_verify_otp(req: CodeRequest) -> Dict[str, Any]:
    services = _services()
    limiter = get_code_limiter()
    _check_limit(limiter, req.email)
    result = await services.gate.verify_registration(req.email, req.otp_code)
    limiter.reset(_limiter_key(req.email))
    return _session_payload(result)


@app.post("/api/auth/resend-otp")
async def auth_resend_otp(req: EmailRequest) -> Dict[str, Any]:
    services = _services()
    challenge = await services.gate.resend_code(req.email)
    return _challenge_payload(services, challenge, {"message": "New verification code sent!"})


@app.post("/api/auth/login")
async def auth_login(req: LoginRequest) -> Dict[str, Any]:
    services = _services()
    limiter = get_login_limiter()
    _check_limit(limiter, req.email)
    challenge = await services.gate.login(req.email, req.password)
    limiter.reset(_limiter_key(req.email))
    return _challenge_payload(
        services,
        challenge,
        {"message": "Verification code sent to your email", "requiresOTP": True, "email": challenge.email},
    )


@app.post("/api/auth/verify-login-otp")
async def auth_verify_login_otp(req: CodeRequest) -> Dict[str, Any]:
    services = _services()
    limiter = get_code_limiter()
    _check_limit(limiter, req.email)
    result = await services.gate.verify_login_otp(req.email, req.otp_code)
    limiter.reset(_limiter_key(req.email))
    return _session_payload(result)


@app.get("/api/auth/me")
def auth_me(request: Request) -> Dict[str, Any]:
    user = _current_user(request)
    with _services().store.transaction() as tx:
        identity = tx.get_identity_by_id(user.id)
    if identity is None:
        raise NotFound("User not found")
    return {"user": identity.public_dict()}


def _format_sse_data(event: ChatStreamEvent) -> str:
    """Format a relay event in the client's `data:`-only SSE dialect."""
    if event.event_type == "token":
        return f"data: {json.dumps({'content': event.content})}\n\n"
    if event.event_type == "done":
        return f"data: {DONE_MARKER}\n\n"
    return f"data: {json.dumps({'error': event.content or 'Stream error'})}\n\n"


async def _chat_stream(relay: CompletionRelay, *, user: AuthUser, sreq: ChatStreamRequest, model: str):
    events = relay.run(user=user, messages=sreq.messages, model=model, conversation_id=sreq.conversation_id)
    async with aclosing(events):
        async for event in events:
            yield _format_sse_data(event)


@app.post("/api/chat/stream")
async def chat_stream(request: Request, sreq: ChatStreamRequest) -> StreamingResponse:
    """Streaming chat endpoint using Server-Sent Events."""
    user = _current_user(request)
    services = _services()

    if not sreq.messages:
        raise ValidationError("Messages array is required")
    if sreq.messages[-1].role != "user":
        raise ValidationError("The last message must be a user message")
    if sreq.conversation_id:
        # Ownership is checked before any bytes are streamed.
        services.conversations.require_owned(user, sreq.conversation_id)

    model = (sreq.model or "").strip() or services.llm_cfg.default_model
    return StreamingResponse(
        _chat_stream(services.relay, user=user, sreq=sreq, model=model),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@app.post("/api/conversations")
def create_conversation(request: Request, req: ConversationCreateRequest) -> Dict[str, Any]:
    conv = _services().conversations.create(_current_user(request), req.title)
    return {"id": conv.id, "title": conv.title, "created_at": conv.created_at.isoformat()}


@app.get("/api/conversations")
def list_conversations(request: Request) -> Dict[str, Any]:
    convs = _services().conversations.list(_current_user(request))
    return {"conversations": [c.to_dict() for c in convs]}


@app.get("/api/conversations/{conversation_id}")
def get_conversation_history(request: Request, conversation_id: str) -> Dict[str, Any]:
    turns = _services().conversations.history(_current_user(request), conversation_id)
    return {"messages": [t.to_dict() for t in turns]}


@app.delete("/api/conversations/{conversation_id}")
def delete_conversation(request: Request, conversation_id: str) -> Dict[str, Any]:
    _services().conversations.delete(_current_user(request), conversation_id)
    return {"message": "Conversation deleted"}


@app.get("/api/weather")
def weather(request: Request, city: Optional[str] = Query(None)) -> Dict[str, Any]:
    _current_user(request)
    return {"weather": fetch_weather(city)}


def run(host: str = "0.0.0.0", port: int = 5000) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting chatbot API on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
