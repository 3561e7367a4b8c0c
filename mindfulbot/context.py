from __future__ import annotations

from dataclasses import dataclass, field

from .config import settings
from .prompts import SYSTEM_PREAMBLE
from .safety import sanitize_bot_text
from .schemas import ChatSession, Role

PROVIDER_ROLES = {Role.USER: "user", Role.ASSISTANT: "assistant"}


@dataclass(frozen=True)
class ProviderRequest:
    system_prompt: str
    messages: list[dict[str, str]] = field(default_factory=list)


def build_provider_request(
    session: ChatSession,
    new_user_text: str,
    window: int | None = None,
) -> ProviderRequest:
    """Turn the recent history plus the new message into provider turns.

    The history never ends on an assistant turn right before the new user
    turn and never holds two assistant turns in a row; the new text is always
    the final user turn. Earlier user turns are redacted like outbound text, so
    a past crisis message is never replayed to the provider. Topic metadata
    stays out of the request.
    """
    size = settings.context_window_messages if window is None else window
    recent = session.messages[-size:] if size > 0 else []

    turns: list[dict[str, str]] = []
    for message in recent:
        text = sanitize_bot_text(message.text) if message.role is Role.USER else message.text
        turn = {"role": PROVIDER_ROLES[message.role], "content": text}
        if turns and turn["role"] == "assistant" and turns[-1]["role"] == "assistant":
            turns[-1] = turn
            continue
        turns.append(turn)

    if turns and turns[-1]["role"] == "assistant":
        turns.pop()

    turns.append({"role": "user", "content": new_user_text})
    return ProviderRequest(system_prompt=SYSTEM_PREAMBLE, messages=turns)
