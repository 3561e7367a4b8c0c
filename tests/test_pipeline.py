import asyncio

import httpx
import pytest

from conftest import RecordingProvider, run
from mindfulbot.llm.provider import OpenAICompatibleProvider, ProviderError
from mindfulbot.orchestrator import (
    ChatPipeline,
    PipelineState,
    is_help_command,
    provider_fallback_text,
)
from mindfulbot.persistence import MemoryStatePersistence
from mindfulbot.prompts import (
    CRISIS_RESPONSE,
    HELP_RESPONSE,
    REPEAT_FALLBACK_RESPONSE,
    SYSTEM_PREAMBLE,
)
from mindfulbot.resources import RESOURCE_KEYS, RESOURCE_MAP, TopicKey
from mindfulbot.safety import CRISIS_PATTERNS, REDACTION_TOKEN
from mindfulbot.schemas import Role
from mindfulbot.session_store import SessionStore


def test_crisis_message_never_reaches_provider(pipeline, provider, store):
    session_id = store.active_session_id
    result = run(pipeline.submit(session_id, "I want to kill myself"))

    assert result.accepted
    assert provider.calls == []
    assert result.reply.resource_key is TopicKey.CRISIS
    assert CRISIS_RESPONSE in result.reply.text
    messages = store.get(session_id).messages
    assert [m.role for m in messages[-2:]] == [Role.USER, Role.ASSISTANT]
    assert messages[-2].text == "I want to kill myself"


def test_help_command_returns_guidance_without_provider(pipeline, provider, store):
    result = run(pipeline.submit(store.active_session_id, "  HELP "))

    assert result.reply.text == HELP_RESPONSE
    assert result.reply.resource_key is TopicKey.GENERAL_RESOURCES
    assert provider.calls == []


def test_help_inside_sentence_goes_to_provider(pipeline, provider, store):
    run(pipeline.submit(store.active_session_id, "can you help me relax"))
    assert len(provider.calls) == 1


def test_help_command_matches_bare_word_only():
    assert is_help_command("help") is True
    assert is_help_command("help me") is False


def test_anxious_message_calls_provider_with_preamble_and_one_user_turn(pipeline, provider, store):
    result = run(pipeline.submit(store.active_session_id, "I am anxious about exams"))

    assert len(provider.calls) == 1
    call = provider.calls[0]
    assert call["system_prompt"] == SYSTEM_PREAMBLE
    assert call["messages"] == [{"role": "user", "content": "I am anxious about exams"}]
    assert result.reply.resource_key is TopicKey.ANXIETY
    assert result.provider_error is None


def test_provider_failure_falls_back_to_topic_title(failing_provider):
    persistence = MemoryStatePersistence()
    store = SessionStore(persistence)
    pipeline = ChatPipeline(store, failing_provider)
    session_id = store.active_session_id
    saves_before = persistence.save_count

    result = run(pipeline.submit(session_id, "I am stressed about work"))

    assert result.accepted
    assert isinstance(result.provider_error, ProviderError)
    assert RESOURCE_MAP[TopicKey.STRESS].title in result.reply.text
    assert result.reply.resource_key is TopicKey.STRESS
    assert store.get(session_id).messages[-1] == result.reply
    assert persistence.save_count == saves_before + 1
    assert len(failing_provider.calls) == 1


def test_provider_reply_is_sanitized_and_deduplicated(store):
    provider = RecordingProvider(replies=["Please don't die.", "Same words.", "Same words."])
    pipeline = ChatPipeline(store, provider)
    session_id = store.active_session_id

    first = run(pipeline.submit(session_id, "I feel low"))
    run(pipeline.submit(session_id, "still low"))
    third = run(pipeline.submit(session_id, "really low"))

    assert REDACTION_TOKEN in first.reply.text
    assert third.reply.text == REPEAT_FALLBACK_RESPONSE


def test_user_and_reply_appended_together(pipeline, store):
    session_id = store.active_session_id
    before = len(store.get(session_id).messages)

    run(pipeline.submit(session_id, "I need help with breathing exercises"))

    messages = store.get(session_id).messages
    assert len(messages) == before + 2
    assert messages[-2].role is Role.USER
    assert messages[-1].role is Role.ASSISTANT
    assert messages[-1].resource_key is TopicKey.BREATHING


def test_title_comes_from_first_user_message(pipeline, store):
    session_id = store.active_session_id
    run(pipeline.submit(session_id, "I am anxious about exams"))

    assert store.get(session_id).title == "I am anxious about e..."


def test_empty_submission_is_rejected(pipeline, provider, store):
    result = run(pipeline.submit(store.active_session_id, "   "))

    assert result.accepted is False
    assert result.reason == "empty"
    assert provider.calls == []


def test_unknown_session_is_rejected(pipeline):
    result = run(pipeline.submit("missing", "hello"))
    assert result.accepted is False
    assert result.reason == "unknown_session"


class GatedProvider(RecordingProvider):
    """Blocks inside the provider call until released."""

    def __init__(self) -> None:
        super().__init__(replies=["Take it one step at a time."])
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def generate_chat(self, messages, system_prompt=None, **kwargs):
        self.entered.set()
        await self.release.wait()
        return await super().generate_chat(messages, system_prompt, **kwargs)


def test_second_submission_to_busy_session_is_rejected(store):
    async def scenario():
        provider = GatedProvider()
        pipeline = ChatPipeline(store, provider)
        session_id = store.active_session_id
        other_id = store.create_session().session.id

        first = asyncio.create_task(pipeline.submit(session_id, "I am stressed"))
        await provider.entered.wait()
        assert pipeline.state(session_id) is PipelineState.PROVIDER_CALL

        busy = await pipeline.submit(session_id, "hello again")
        rotate = pipeline.rotate_resource(session_id, None)
        other = await pipeline.submit(other_id, "I want to die")

        provider.release.set()
        done = await first
        return pipeline, session_id, busy, rotate, other, done

    pipeline, session_id, busy, rotate, other, done = run(scenario())

    assert busy.accepted is False and busy.reason == "busy"
    assert rotate.accepted is False and rotate.reason == "busy"
    assert other.accepted and other.reply.resource_key is TopicKey.CRISIS
    assert done.accepted
    assert pipeline.state(session_id) is PipelineState.IDLE


def test_reply_for_deleted_session_is_discarded(store):
    async def scenario():
        provider = GatedProvider()
        pipeline = ChatPipeline(store, provider)
        doomed = store.create_session().session.id

        task = asyncio.create_task(pipeline.submit(doomed, "I am stressed"))
        await provider.entered.wait()
        store.delete_session(doomed)
        provider.release.set()
        return await task, doomed

    result, doomed = run(scenario())

    assert result.accepted and result.discarded
    assert store.get(doomed) is None
    assert all(result.reply not in s.messages for s in store.sessions())


def test_unexpected_provider_error_falls_back(store):
    provider = RecordingProvider(error=RuntimeError("bug"))
    pipeline = ChatPipeline(store, provider)
    session_id = store.active_session_id

    result = run(pipeline.submit(session_id, "I am stressed"))

    assert result.accepted
    assert isinstance(result.provider_error, ProviderError)
    assert RESOURCE_MAP[TopicKey.STRESS].title in result.reply.text
    assert store.get(session_id).messages[-1] == result.reply
    assert pipeline.state(session_id) is PipelineState.IDLE


@pytest.mark.parametrize(
    "body",
    [{"choices": [{"message": "hi"}]}, {"choices": [{"message": {"content": 42}}]}],
)
def test_malformed_provider_payload_falls_back(store, body):
    client = OpenAICompatibleProvider(
        api_key="sk-test",
        chat_model="m",
        name="sealion",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
    )
    pipeline = ChatPipeline(store, client)

    result = run(pipeline.submit(store.active_session_id, "I am stressed about work"))

    assert result.accepted
    assert isinstance(result.provider_error, ProviderError)
    assert result.reply.text == provider_fallback_text(TopicKey.STRESS)
    assert pipeline.state(store.active_session_id) is PipelineState.IDLE


def test_rotate_resource_is_local_and_skips_current_key(pipeline, provider, store):
    session_id = store.active_session_id
    result = pipeline.rotate_resource(session_id, TopicKey.ANXIETY)

    assert result.accepted
    assert result.reply.resource_key is TopicKey.DEPRESSION
    assert RESOURCE_MAP[TopicKey.DEPRESSION].title in result.reply.text
    assert provider.calls == []
    assert store.get(session_id).messages[-1] == result.reply


def test_rotate_resource_cycles_through_every_key(pipeline, store):
    session_id = store.active_session_id
    current = None
    seen = []
    for _ in range(len(RESOURCE_KEYS)):
        current = pipeline.rotate_resource(session_id, current).reply.resource_key
        seen.append(current)

    assert len(set(seen)) == len(RESOURCE_KEYS)


def test_quick_actions(pipeline, provider, store):
    session_id = store.active_session_id

    crisis = run(pipeline.quick_action(session_id, "crisis"))
    music = run(pipeline.quick_action(session_id, "music"))
    unknown = run(pipeline.quick_action(session_id, "dance"))

    assert crisis.reply.resource_key is TopicKey.CRISIS
    assert crisis.user_message.text == "I need crisis support"
    assert music.reply.resource_key is TopicKey.MUSIC
    assert len(provider.calls) == 1
    assert unknown.accepted is False and unknown.reason == "unknown_action"


@pytest.mark.parametrize(
    "message",
    ["I want to kill myself", "help", "I am anxious about exams", "I am stressed about work", "hello"],
)
def test_stored_assistant_text_never_contains_crisis_matches(message, store):
    pipeline = ChatPipeline(store, RecordingProvider(replies=["I can't stop thinking about death. Stay safe."]))
    run(pipeline.submit(store.active_session_id, message))

    for stored in store.active_session().messages:
        if stored.role is Role.ASSISTANT:
            assert not any(pattern.search(stored.text) for pattern in CRISIS_PATTERNS)
