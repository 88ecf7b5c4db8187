import json
import tempfile
from pathlib import Path

import pytest

from weather_core.api import service as api_service
from weather_core.config.settings import Settings
from weather_core.domain.events import StreamEvent
from weather_core.domain.models import ChatChoice, ChatMessage, ChatResult
from weather_core.infrastructure.storage.json_store import JsonChatRecordSink, JsonSessionStore
from weather_core.moderation import OUT_OF_SCOPE_RESPONSE, ClassifierResult, ModerationGate
from weather_core.orchestrator.agent_loop import AgentLoopExecutor
from weather_core.orchestrator.router import ModelRouter
from weather_core.orchestrator.service import ChatOrchestrator
from weather_core.tools.definitions import ToolCall
from weather_core.tools.executor import ToolExecutor


class CleanClassifier:
    async def classify(self, text):
        return ClassifierResult(flagged=False, category_scores={"harassment": 0.01})


class QueueProvider:
    supports_streaming = False

    def __init__(self, name, replies):
        self.name = name
        self.replies = list(replies)
        self.requests = []

    async def chat(self, req):
        self.requests.append(req)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResult(provider=self.name, model=req.model, choices=[ChatChoice(index=0, message=reply)])

    async def chat_stream(self, req):
        raise NotImplementedError
        yield


class BrokenSink:
    async def record(self, *args, **kwargs):
        raise OSError("disk full")


def _router_reply(model, reasoning="weather query"):
    return ChatMessage(
        role="assistant",
        content=json.dumps({"model": model, "confidence": 0.9, "reasoning": reasoning}),
    )


def _paris_tool_turn():
    return ChatMessage(
        role="assistant",
        content=None,
        tool_calls=[ToolCall(id="call_paris", name="get_current_weather", arguments={"location": "Paris"})],
    )


def _build(root, router_replies, providers, sink=None):
    cfg = Settings(stream_word_delay=0, storage_root=str(root))
    tool_log = []

    async def current(args):
        tool_log.append(args)
        return {"location": args["location"], "temperature": 18, "description": "light rain", "humidity": 70}

    executor = AgentLoopExecutor(
        providers={p.name: p for p in providers},
        tool_executor=ToolExecutor({"get_current_weather": current}),
        cfg=cfg,
    )
    store = JsonSessionStore(root=root)
    orchestrator = ChatOrchestrator(
        store=store,
        sink=sink if sink is not None else JsonChatRecordSink(root=root),
        gate=ModerationGate(CleanClassifier(), cfg=cfg),
        router=ModelRouter(provider=QueueProvider("openai", router_replies), cfg=cfg),
        executor=executor,
        cfg=cfg,
    )
    return orchestrator, store, tool_log


@pytest.mark.asyncio
async def test_paris_weather_scenario():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        deepseek = QueueProvider(
            "deepseek",
            [_paris_tool_turn(), ChatMessage(role="assistant", content="It's 18°C with light rain in Paris.")],
        )
        orch, store, tool_log = _build(root, [_router_reply("deepseek")], [deepseek])

        resp = await orch.process_chat("What's the weather like in Paris today?", "paris-1")

        assert resp.success
        assert resp.model_used == "deepseek"
        assert resp.model_display_name == "DeepSeek V3"
        assert resp.fallback_used is False
        assert resp.routing_reasoning == "weather query"
        assert [r.name for r in resp.tool_calls_made] == ["get_current_weather"]
        assert tool_log == [{"location": "Paris"}]
        payload = resp.to_dict()
        assert payload["response"] == "It's 18°C with light rain in Paris."
        assert payload["toolCallsMade"][0]["arguments"] == {"location": "Paris"}

        history = await store.load("paris-1")
        assert [m.role for m in history] == ["user", "assistant"]
        assert history[1].attribution.model == "deepseek"
        session = await store.get_session("paris-1")
        assert session.last_model == "deepseek"

        records = JsonChatRecordSink(root=root).list_records()
        assert len(records) == 1
        roles = [m["role"] for m in records[0]["messages"]]
        assert roles == ["system", "user", "assistant", "tool"]


@pytest.mark.asyncio
async def test_follow_up_passes_last_model_and_history_to_router():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        deepseek = QueueProvider(
            "deepseek",
            [
                ChatMessage(role="assistant", content="Rainy in Paris."),
                ChatMessage(role="assistant", content="Bring an umbrella."),
            ],
        )
        router_provider_replies = [_router_reply("deepseek"), _router_reply("deepseek", "follow-up")]
        orch, store, _ = _build(root, router_provider_replies, [deepseek])
        await orch.process_chat("Weather in Paris?", "s-follow")
        await orch.process_chat("what should I wear?", "s-follow")

        router_requests = orch.router._provider.requests
        second_prompt = router_requests[1].messages[0].content
        assert 'Previous answer was given by "deepseek"' in second_prompt
        assert "Rainy in Paris." in second_prompt

        # 第二次调用模型时能看到完整历史
        msgs = deepseek.requests[1].messages
        assert [m.role for m in msgs] == ["system", "user", "assistant", "user"]


@pytest.mark.asyncio
async def test_moderated_request_is_not_persisted():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        orch, store, _ = _build(root, [], [])
        resp = await orch.process_chat("What is 25 + 37?", "mod-1")
        assert resp.moderated
        assert resp.response == OUT_OF_SCOPE_RESPONSE
        payload = resp.to_dict()
        assert payload["modelUsed"] == "moderation"
        assert payload["routingReasoning"] == "Content moderation"
        assert payload["moderated"] is True
        assert payload["reason"] == "out_of_scope"
        assert await store.load("mod-1") == []


@pytest.mark.asyncio
async def test_analytics_failure_is_not_raised():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        openai = QueueProvider("openai", [ChatMessage(role="assistant", content="Hello! Ask me about weather.")])
        orch, store, _ = _build(root, [_router_reply("openai", "greeting")], [openai], sink=BrokenSink())
        resp = await orch.process_chat("hello", "s-analytics")
        assert resp.success
        assert len(await store.load("s-analytics")) == 2


@pytest.mark.asyncio
async def test_router_failure_falls_back_to_default_then_fallback_model():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        openai = QueueProvider("openai", [RuntimeError("openai down")])
        deepseek = QueueProvider("deepseek", [ChatMessage(role="assistant", content="Clear skies.")])
        orch, store, _ = _build(root, [RuntimeError("router down")], [openai, deepseek])
        resp = await orch.process_chat("sunny?", "s-fb")
        assert resp.model_used == "deepseek"
        assert resp.fallback_used
        assert resp.routing_reasoning == "Routing failed, using default model"
        history = await store.load("s-fb")
        assert history[-1].attribution.used_fallback is True


@pytest.mark.asyncio
async def test_process_chat_stream_persists_and_ends_with_done():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        deepseek = QueueProvider(
            "deepseek",
            [_paris_tool_turn(), ChatMessage(role="assistant", content="18°C and drizzly.")],
        )
        orch, store, _ = _build(root, [_router_reply("deepseek")], [deepseek])
        events = [e async for e in orch.process_chat_stream("Weather in Paris?", "stream-1")]
        types = [e.type for e in events]
        assert types[0] == "routing"
        assert types[-1] == "done"
        assert "tool" in types
        text = "".join(e.data["text"] for e in events if e.type == "content")
        assert text == events[-1].data["response"] == "18°C and drizzly."
        history = await store.load("stream-1")
        assert [m.content for m in history] == ["Weather in Paris?", "18°C and drizzly."]


@pytest.mark.asyncio
async def test_process_chat_stream_moderated_yields_single_done():
    with tempfile.TemporaryDirectory() as d:
        orch, store, _ = _build(Path(d), [], [])
        events = [e async for e in orch.process_chat_stream("give me a recipe for lasagna", "stream-mod")]
        assert [e.type for e in events] == ["done"]
        assert events[0].data["modelUsed"] == "moderation"
        assert events[0].data["reason"] == "out_of_scope"
        assert await store.load("stream-mod") == []


@pytest.mark.asyncio
async def test_process_chat_stream_internal_error_yields_error_event():
    with tempfile.TemporaryDirectory() as d:
        orch, _, _ = _build(Path(d), [], [])
        events = [e async for e in orch.process_chat_stream("weather today?", "bad/id")]
        assert [e.type for e in events] == ["error"]
        assert "message" in events[0].data


@pytest.mark.asyncio
async def test_api_service_functions():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        openai = QueueProvider(
            "openai",
            [
                ChatMessage(role="assistant", content="Hi! Ask me about the weather."),
                ChatMessage(role="assistant", content="Goodbye!"),
            ],
        )
        orch, _, _ = _build(root, [_router_reply("openai", "greeting"), _router_reply("openai", "bye")], [openai])
        api_service.set_default_orchestrator(orch)
        try:
            payload = await api_service.run_weather_chat("hello", "api-1")
            assert payload["modelUsed"] == "openai"
            assert payload["response"] == "Hi! Ask me about the weather."

            lines = [line async for line in api_service.stream_weather_chat("bye", "api-1")]
            assert lines[-1] == "[DONE]\n"
            done = json.loads(lines[-2])
            assert done["type"] == "done"
            assert done["data"]["response"] == "Goodbye!"

            messages = await api_service.get_session_messages("api-1")
            assert [m["role"] for m in messages] == ["user", "assistant", "user", "assistant"]
            assert messages[1]["modelAttribution"]["displayName"] == "GPT-3.5 Turbo"
        finally:
            api_service.set_default_orchestrator(None)


@pytest.mark.asyncio
async def test_stream_weather_chat_close_shuts_down_upstream():
    closed = []

    class ScriptedOrchestrator:
        store = None

        async def process_chat_stream(self, user_message, session_id, max_iterations=None):
            try:
                yield StreamEvent(type="routing", data={"model": "openai"})
                yield StreamEvent(type="content", data={"text": "partial"})
                yield StreamEvent(type="done", data={"response": "partial"})
            finally:
                closed.append(session_id)

    api_service.set_default_orchestrator(ScriptedOrchestrator())
    try:
        lines = api_service.stream_weather_chat("weather?", "api-close")
        first = await anext(lines)
        assert json.loads(first)["type"] == "routing"
        await lines.aclose()
        assert closed == ["api-close"]
    finally:
        api_service.set_default_orchestrator(None)
