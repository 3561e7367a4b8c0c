from __future__ import annotations

from dataclasses import dataclass

from .monitoring.logger import log_event
from .prompts import EMPTY_REPLY_FALLBACK, REPEAT_FALLBACK_RESPONSE
from .resources import TopicKey
from .safety import sanitize_bot_text, strip_provider_disclaimer
from .schemas import ChatSession


@dataclass(frozen=True)
class ProcessedReply:
    text: str
    resource_key: TopicKey
    deduplicated: bool = False


def process_reply(provider_text: str, session: ChatSession, resource_key: TopicKey) -> ProcessedReply:
    text = strip_provider_disclaimer(provider_text) or EMPTY_REPLY_FALLBACK
    text = sanitize_bot_text(text)

    previous = session.last_assistant_message()
    if previous is not None and text.strip() == previous.text.strip():
        log_event("reply_deduplicated", session_id=session.id)
        return ProcessedReply(
            text=sanitize_bot_text(REPEAT_FALLBACK_RESPONSE),
            resource_key=resource_key,
            deduplicated=True,
        )
    return ProcessedReply(text=text, resource_key=resource_key)
