from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Monitoring: must be imported before first use
from .monitoring.logger import configure_logging, get_logger, new_correlation_id, set_correlation_id

from .config import settings
from .db import init_db
from .llm.provider import ConfigurationError, get_llm_provider, validate_provider_configuration
from .orchestrator import ChatPipeline, SubmitResult
from .persistence import SqlStatePersistence
from .prompts import PROVIDER_FALLBACK_NOTICE, QUICK_ACTION_MESSAGES
from .resources import RESOURCE_MAP, TopicKey
from .safety import DISCLAIMER
from .schemas import (
    ChatReply,
    ChatRequest,
    ChatSession,
    Message,
    MessageOut,
    MutationResponse,
    NavigationOut,
    RenameRequest,
    ResourceOut,
    Role,
    RotateRequest,
    SessionDetail,
    SessionListResponse,
    SessionSummary,
)
from .session_store import MutationResult, SessionStore

# Configure structured logging at module load time
configure_logging(level=settings.log_level, fmt=settings.log_format)
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Process-wide store and pipeline, built on first use
# ---------------------------------------------------------------------------
_store: SessionStore | None = None
_pipeline: ChatPipeline | None = None


def get_store() -> SessionStore:
    global _store
    if _store is None:
        init_db()
        _store = SessionStore(SqlStatePersistence(settings.storage_key))
    return _store


def get_pipeline() -> ChatPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = ChatPipeline(get_store(), get_llm_provider())
    return _pipeline


def reset_state() -> None:
    global _store, _pipeline
    _store = None
    _pipeline = None


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    try:
        validate_provider_configuration()
    except ConfigurationError as exc:
        logger.critical("Invalid provider configuration: %s", exc)
        raise
    get_pipeline()
    yield


app = FastAPI(title="mindfulbot-backend", lifespan=lifespan)


def _build_cors_origins(frontend_url: str) -> list[str]:
    candidates = ["http://localhost:5173"]
    if frontend_url:
        candidates.append(frontend_url.rstrip("/"))
    return list(dict.fromkeys(origin for origin in candidates if origin))


app.add_middleware(
    CORSMiddleware,
    allow_origins=_build_cors_origins(settings.frontend_url),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


# ---------------------------------------------------------------------------
# View helpers
# ---------------------------------------------------------------------------
def _resource_out(key: TopicKey) -> ResourceOut:
    resource = RESOURCE_MAP[key]
    navigation = resource.navigation
    return ResourceOut(
        key=key,
        title=resource.title,
        description=resource.description,
        navigation=NavigationOut(path=navigation.path, section=navigation.section),
    )


def _message_out(message: Message) -> MessageOut:
    assistant = message.role is Role.ASSISTANT
    return MessageOut(
        id=message.id,
        text=message.text,
        role=message.role,
        created_at=message.created_at,
        resource=_resource_out(message.resource_key) if message.resource_key else None,
        disclaimer=DISCLAIMER if assistant else None,
    )


def _summary(session: ChatSession, active_session_id: str) -> SessionSummary:
    return SessionSummary(
        id=session.id,
        title=session.title,
        last_active_at=session.last_active_at,
        message_count=len(session.messages),
        active=session.id == active_session_id,
    )


def _mutation_response(result: MutationResult, store: SessionStore) -> MutationResponse:
    active_session_id = store.active_session_id
    return MutationResponse(
        changed=result.changed,
        reason=result.reason,
        persisted=result.persisted,
        session=_summary(result.session, active_session_id) if result.session else None,
        active_session_id=active_session_id,
    )


def _raise_for_rejection(result: SubmitResult) -> None:
    if result.accepted:
        return
    if result.reason == "busy":
        raise HTTPException(status_code=409, detail="A reply is still being prepared for this chat.")
    if result.reason == "empty":
        raise HTTPException(status_code=422, detail="message must not be empty")
    if result.reason == "unknown_action":
        raise HTTPException(status_code=404, detail="unknown quick action")
    raise HTTPException(status_code=404, detail="chat session not found")


def _chat_reply(result: SubmitResult) -> ChatReply:
    if result.discarded:
        # The session was deleted while the reply was prepared; nothing to show.
        return ChatReply(session_id=result.session_id, discarded=True, persisted=False)
    return ChatReply(
        session_id=result.session_id,
        user_message=_message_out(result.user_message) if result.user_message else None,
        reply=_message_out(result.reply),
        notice=PROVIDER_FALLBACK_NOTICE if result.provider_error else None,
        discarded=result.discarded,
        persisted=result.persist_error is None,
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/resources", response_model=list[ResourceOut])
def list_resources() -> list[ResourceOut]:
    return [_resource_out(key) for key in RESOURCE_MAP]


@app.get("/sessions", response_model=SessionListResponse)
def list_sessions(store: SessionStore = Depends(get_store)) -> SessionListResponse:
    active_session_id = store.active_session_id
    return SessionListResponse(
        active_session_id=active_session_id,
        sessions=[_summary(session, active_session_id) for session in store.sessions()],
    )


@app.post("/sessions", response_model=MutationResponse)
def create_session(store: SessionStore = Depends(get_store)) -> MutationResponse:
    return _mutation_response(store.create_session(), store)


@app.get("/sessions/{session_id}", response_model=SessionDetail)
def get_session(session_id: str, store: SessionStore = Depends(get_store)) -> SessionDetail:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="chat session not found")
    summary = _summary(session, store.active_session_id)
    return SessionDetail(
        **summary.model_dump(),
        messages=[_message_out(message) for message in session.messages],
    )


@app.patch("/sessions/{session_id}", response_model=MutationResponse)
def rename_session(
    session_id: str,
    payload: RenameRequest,
    store: SessionStore = Depends(get_store),
) -> MutationResponse:
    return _mutation_response(store.rename_session(session_id, payload.title), store)


@app.delete("/sessions/{session_id}", response_model=MutationResponse)
def delete_session(session_id: str, store: SessionStore = Depends(get_store)) -> MutationResponse:
    return _mutation_response(store.delete_session(session_id), store)


@app.post("/sessions/{session_id}/select", response_model=MutationResponse)
def select_session(session_id: str, store: SessionStore = Depends(get_store)) -> MutationResponse:
    return _mutation_response(store.set_active(session_id), store)


@app.post("/chat", response_model=ChatReply)
async def chat(payload: ChatRequest, pipeline: ChatPipeline = Depends(get_pipeline)) -> ChatReply:
    set_correlation_id(new_correlation_id())
    session_id = payload.session_id or pipeline.store.active_session_id
    result = await pipeline.submit(session_id, payload.message)
    _raise_for_rejection(result)
    return _chat_reply(result)


@app.post("/chat/rotate", response_model=ChatReply)
def rotate_resource(payload: RotateRequest, pipeline: ChatPipeline = Depends(get_pipeline)) -> ChatReply:
    set_correlation_id(new_correlation_id())
    session_id = payload.session_id or pipeline.store.active_session_id
    result = pipeline.rotate_resource(session_id, payload.current_key)
    _raise_for_rejection(result)
    return _chat_reply(result)


@app.get("/chat/quick-actions")
def list_quick_actions() -> dict[str, str]:
    return dict(QUICK_ACTION_MESSAGES)


@app.post("/chat/quick-actions/{action}", response_model=ChatReply)
async def quick_action(
    action: str,
    session_id: str | None = None,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> ChatReply:
    set_correlation_id(new_correlation_id())
    result = await pipeline.quick_action(session_id or pipeline.store.active_session_id, action)
    _raise_for_rejection(result)
    return _chat_reply(result)
