"""
Request/response cycle behind the support chat.

Each session owns an independent state machine:

    IDLE -> SENDING -> (CRISIS_OVERRIDE | PROVIDER_CALL) -> POST_PROCESS -> IDLE

Crisis messages and the bare ``help`` command are answered from canned text and
never reach the completion provider. Provider failures fall back to a
deterministic reply, so every accepted submission ends in an assistant message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from .context import build_provider_request
from .llm.provider import CompletionProvider, ProviderError, generate_chat
from .monitoring.logger import Timer, log_event
from .persistence import PersistenceError
from .postprocess import process_reply
from .prompts import (
    CRISIS_RESPONSE,
    HELP_RESPONSE,
    PROVIDER_FALLBACK_TEMPLATE,
    QUICK_ACTION_MESSAGES,
    ROTATE_TEMPLATE,
)
from .resources import TopicKey, get_resource, match_resource, next_resource_key
from .safety import is_crisis, sanitize_bot_text
from .schemas import Message, Role
from .session_store import SessionStore

logger = logging.getLogger(__name__)

HELP_COMMAND_RE = re.compile(r"^\s*help\s*$", re.IGNORECASE)

RejectReason = Literal["empty", "busy", "unknown_session", "unknown_action"]


class PipelineState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    CRISIS_OVERRIDE = "crisis_override"
    PROVIDER_CALL = "provider_call"
    POST_PROCESS = "post_process"


@dataclass(frozen=True)
class SubmitResult:
    accepted: bool
    session_id: str
    reason: RejectReason | None = None
    user_message: Message | None = None
    reply: Message | None = None
    provider_error: ProviderError | None = None
    persist_error: PersistenceError | None = None
    discarded: bool = False


def is_help_command(message: str) -> bool:
    return bool(HELP_COMMAND_RE.match(message))


def provider_fallback_text(resource_key: TopicKey) -> str:
    return PROVIDER_FALLBACK_TEMPLATE.format(title=get_resource(resource_key).title)


class ChatPipeline:
    def __init__(self, store: SessionStore, provider: CompletionProvider) -> None:
        self.store = store
        self.provider = provider
        self._states: dict[str, PipelineState] = {}

    def state(self, session_id: str) -> PipelineState:
        return self._states.get(session_id, PipelineState.IDLE)

    def _set_state(self, session_id: str, state: PipelineState) -> None:
        if state is PipelineState.IDLE:
            self._states.pop(session_id, None)
        else:
            self._states[session_id] = state

    async def submit(self, session_id: str, text: str) -> SubmitResult:
        message = text.strip()
        if not message:
            return SubmitResult(accepted=False, session_id=session_id, reason="empty")
        if self.state(session_id) is not PipelineState.IDLE:
            return SubmitResult(accepted=False, session_id=session_id, reason="busy")
        session = self.store.get(session_id)
        if session is None:
            return SubmitResult(accepted=False, session_id=session_id, reason="unknown_session")

        self._set_state(session_id, PipelineState.SENDING)
        try:
            user_message = Message(text=message, role=Role.USER)
            provider_error: ProviderError | None = None

            if is_crisis(message):
                self._set_state(session_id, PipelineState.CRISIS_OVERRIDE)
                log_event("safety_trigger", trigger_type="crisis", session_id=session_id)
                reply_text, resource_key = CRISIS_RESPONSE, TopicKey.CRISIS
            elif is_help_command(message):
                self._set_state(session_id, PipelineState.CRISIS_OVERRIDE)
                log_event("safety_trigger", trigger_type="help", session_id=session_id)
                reply_text, resource_key = HELP_RESPONSE, TopicKey.GENERAL_RESOURCES
            else:
                self._set_state(session_id, PipelineState.PROVIDER_CALL)
                resource_key = match_resource(message)
                request = build_provider_request(session, message)
                try:
                    with Timer() as t:
                        provider_text = await generate_chat(
                            self.provider,
                            messages=request.messages,
                            system_prompt=request.system_prompt,
                        )
                except ProviderError as exc:
                    provider_error = exc
                    log_event(
                        "provider_fallback",
                        level=logging.WARNING,
                        session_id=session_id,
                        resource_key=resource_key.value,
                        error=str(exc),
                    )
                    reply_text = provider_fallback_text(resource_key)
                else:
                    log_event(
                        "llm_call",
                        provider=getattr(self.provider, "name", "unknown"),
                        session_id=session_id,
                        duration_ms=round(t.elapsed_ms),
                    )
                    reply_text = process_reply(provider_text, session, resource_key).text

            self._set_state(session_id, PipelineState.POST_PROCESS)
            reply = Message(
                text=sanitize_bot_text(reply_text),
                role=Role.ASSISTANT,
                resource_key=resource_key,
            )
            result = self.store.append_messages(session_id, [user_message, reply])
            if result.reason == "unknown_session":
                # Session was deleted while the provider call was in flight.
                logger.info("Discarding reply for removed session %s", session_id)
                return SubmitResult(
                    accepted=True,
                    session_id=session_id,
                    reply=reply,
                    provider_error=provider_error,
                    discarded=True,
                )
            log_event(
                "chat_submit",
                session_id=session_id,
                resource_key=resource_key.value,
                fallback=provider_error is not None,
            )
            return SubmitResult(
                accepted=True,
                session_id=session_id,
                user_message=user_message,
                reply=reply,
                provider_error=provider_error,
                persist_error=result.error,
            )
        finally:
            self._set_state(session_id, PipelineState.IDLE)

    async def quick_action(self, session_id: str, action: str) -> SubmitResult:
        text = QUICK_ACTION_MESSAGES.get(action)
        if text is None:
            return SubmitResult(accepted=False, session_id=session_id, reason="unknown_action")
        return await self.submit(session_id, text)

    def rotate_resource(self, session_id: str, current_key: TopicKey | None) -> SubmitResult:
        if self.state(session_id) is not PipelineState.IDLE:
            return SubmitResult(accepted=False, session_id=session_id, reason="busy")
        if self.store.get(session_id) is None:
            return SubmitResult(accepted=False, session_id=session_id, reason="unknown_session")
        key = next_resource_key(current_key)
        reply = Message(
            text=sanitize_bot_text(ROTATE_TEMPLATE.format(title=get_resource(key).title)),
            role=Role.ASSISTANT,
            resource_key=key,
        )
        result = self.store.append_messages(session_id, [reply])
        log_event("resource_rotated", session_id=session_id, resource_key=key.value)
        return SubmitResult(
            accepted=True,
            session_id=session_id,
            reply=reply,
            persist_error=result.error,
        )
