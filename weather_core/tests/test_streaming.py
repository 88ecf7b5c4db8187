import asyncio
import json

import pytest

from weather_core.config.settings import Settings
from weather_core.domain.events import END_OF_STREAM, StreamEvent, encode_event, frame_events
from weather_core.domain.models import ChatChoice, ChatMessage, ChatResult, ChatStreamChoice, ChatStreamChunk
from weather_core.domain.routing import RoutingDecision
from weather_core.orchestrator.agent_loop import AgentLoopExecutor
from weather_core.orchestrator.fallback import APOLOGY_RESPONSE
from weather_core.orchestrator.streaming import StreamEventEmitter
from weather_core.tools.definitions import ToolCall
from weather_core.tools.executor import ToolExecutor


class StreamingProvider:
    """原生流式 Provider：按给定片段输出，或在输出若干片段后失败。"""

    supports_streaming = True

    def __init__(self, name, turns, fail_after=None):
        self.name = name
        self.turns = list(turns)
        self.fail_after = fail_after
        self.calls = 0

    async def chat(self, req):
        raise NotImplementedError

    async def chat_stream(self, req):
        self.calls += 1
        turn = self.turns.pop(0)
        if isinstance(turn, list) and turn and isinstance(turn[0], ToolCall):
            deltas = [
                {"index": i, "id": c.id, "name": c.name, "arguments": json.dumps(c.arguments)}
                for i, c in enumerate(turn)
            ]
            yield ChatStreamChunk(provider=self.name, model=req.model, choices=[], tool_call_deltas=deltas)
            return
        for i, piece in enumerate(turn):
            if self.fail_after is not None and i >= self.fail_after:
                raise ConnectionError("stream dropped")
            yield ChatStreamChunk(
                provider=self.name,
                model=req.model,
                choices=[ChatStreamChoice(index=0, delta=ChatMessage(role="assistant", content=piece))],
            )


class PlainProvider:
    supports_streaming = False

    def __init__(self, name, text):
        self.name = name
        self.text = text

    async def chat(self, req):
        msg = ChatMessage(role="assistant", content=self.text)
        return ChatResult(provider=self.name, model=req.model, choices=[ChatChoice(index=0, message=msg)])

    async def chat_stream(self, req):
        raise NotImplementedError
        yield


def _emitter(*providers, tools=None, **cfg):
    async def weather(args):
        return {"location": args.get("location"), "temperature": 21}

    executor = AgentLoopExecutor(
        providers={p.name: p for p in providers},
        tool_executor=tools or ToolExecutor({"get_current_weather": weather}),
        cfg=Settings(stream_word_delay=0, **cfg),
    )
    return StreamEventEmitter(executor)


async def _collect(agen):
    return [e async for e in agen]


def _content_after_last_routing(events):
    last_routing = max(i for i, e in enumerate(events) if e.type == "routing")
    return "".join(e.data["text"] for e in events[last_routing:] if e.type == "content")


MESSAGES = [ChatMessage(role="user", content="What's the weather in Paris?")]


@pytest.mark.asyncio
async def test_stream_routing_first_and_content_matches_done():
    provider = StreamingProvider(
        "deepseek",
        [
            [ToolCall(id="c1", name="get_current_weather", arguments={"location": "Paris"})],
            ["It is ", "21°C ", "in Paris."],
        ],
    )
    decision = RoutingDecision(model="deepseek", confidence=0.9, reasoning="weather", fallback_model="openai")
    events = await _collect(_emitter(provider).stream(MESSAGES, decision, 5))

    types = [e.type for e in events]
    assert types[0] == "routing"
    assert events[0].data["modelDisplayName"] == "DeepSeek V3"
    assert types.count("done") == 1 and types[-1] == "done"
    assert types.index("tool") < types.index("content")
    done = events[-1].data
    assert done["response"] == "It is 21°C in Paris."
    assert _content_after_last_routing(events) == done["response"]
    assert done["modelUsed"] == "deepseek"
    assert done["fallbackUsed"] is False
    assert [t["name"] for t in done["toolCallsMade"]] == ["get_current_weather"]


@pytest.mark.asyncio
async def test_stream_falls_back_with_new_routing_event():
    primary = StreamingProvider("deepseek", [["Partial ", "answer ", "lost"]], fail_after=1)
    fallback = PlainProvider("openai", "Sunny and warm.")
    decision = RoutingDecision(model="deepseek", confidence=0.9, reasoning="weather", fallback_model="openai")
    events = await _collect(_emitter(primary, fallback).stream(MESSAGES, decision, 5))

    routing = [e for e in events if e.type == "routing"]
    assert len(routing) == 2
    assert routing[1].data["fallbackUsed"] is True
    assert routing[1].data["model"] == "openai"
    done = events[-1]
    assert done.type == "done"
    assert done.data["fallbackUsed"] is True
    assert done.data["modelUsed"] == "openai"
    assert done.data["response"] == "Sunny and warm."
    assert _content_after_last_routing(events) == "Sunny and warm."
    synthetic = [e.data["synthetic"] for e in events if e.type == "content"]
    # 主模型的原生片段在前，回退模型的模拟词块在后
    assert synthetic[0] is False and synthetic[-1] is True


class StallingStreamProvider:
    """输出一个片段后挂起，模拟上游卡住的原生流。"""

    supports_streaming = True

    def __init__(self, name):
        self.name = name

    async def chat(self, req):
        raise NotImplementedError

    async def chat_stream(self, req):
        yield ChatStreamChunk(
            provider=self.name,
            model=req.model,
            choices=[ChatStreamChoice(index=0, delta=ChatMessage(role="assistant", content="Hel"))],
        )
        await asyncio.sleep(10)


class StallingPlainProvider(PlainProvider):
    async def chat(self, req):
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_stalled_native_stream_times_out_and_falls_back():
    primary = StallingStreamProvider("deepseek")
    fallback = PlainProvider("openai", "Sunny today")
    decision = RoutingDecision(model="deepseek", confidence=0.9, reasoning="weather", fallback_model="openai")
    emitter = _emitter(primary, fallback, model_timeout_seconds=0.05)
    events = await _collect(emitter.stream(MESSAGES, decision, 5))

    routing = [e for e in events if e.type == "routing"]
    assert len(routing) == 2
    assert routing[1].data["fallbackUsed"] is True
    assert routing[1].data["model"] == "openai"
    done = events[-1]
    assert [e.is_terminal for e in events].count(True) == 1
    assert done.type == "done"
    assert done.data["modelUsed"] == "openai"
    assert done.data["fallbackUsed"] is True
    assert _content_after_last_routing(events) == done.data["response"] == "Sunny today"


@pytest.mark.asyncio
async def test_stalled_synthetic_call_times_out_and_falls_back():
    primary = StallingPlainProvider("openai", "never")
    fallback = PlainProvider("deepseek", "Clear skies")
    decision = RoutingDecision(model="openai", confidence=0.6, reasoning="weather", fallback_model="deepseek")
    emitter = _emitter(primary, fallback, model_timeout_seconds=0.05)
    events = await _collect(emitter.stream(MESSAGES, decision, 5))

    assert [e.data["model"] for e in events if e.type == "routing"] == ["openai", "deepseek"]
    assert events[-1].data["modelUsed"] == "deepseek"
    assert events[-1].data["response"] == "Clear skies"


@pytest.mark.asyncio
async def test_stream_apology_when_everything_fails():
    primary = StreamingProvider("deepseek", [["x"]], fail_after=0)
    decision = RoutingDecision(model="deepseek", confidence=0.9, reasoning="weather", fallback_model=None)
    events = await _collect(_emitter(primary).stream(MESSAGES, decision, 5))
    done = events[-1]
    assert done.type == "done"
    assert done.data["response"] == APOLOGY_RESPONSE
    assert done.data["success"] is False
    assert _content_after_last_routing(events) == APOLOGY_RESPONSE


@pytest.mark.asyncio
async def test_stream_on_complete_runs_before_done():
    seen = []

    async def on_complete(response):
        seen.append(response.response)

    provider = PlainProvider("openai", "Hello there!")
    decision = RoutingDecision(model="openai", confidence=0.6, reasoning="greeting", fallback_model="deepseek")
    agen = _emitter(provider).stream(MESSAGES, decision, 5, on_complete=on_complete)
    events = []
    async for event in agen:
        if event.type == "done":
            assert seen == ["Hello there!"]
        events.append(event)
    assert events[-1].data["routingConfidence"] == 0.6


@pytest.mark.asyncio
async def test_closing_stream_stops_further_calls():
    tool_calls = []

    async def weather(args):
        tool_calls.append(args)
        return {"temperature": 1}

    provider = StreamingProvider(
        "deepseek",
        [
            [ToolCall(id="c1", name="get_current_weather", arguments={"location": "Oslo"})],
            ["never ", "reached"],
        ],
    )
    decision = RoutingDecision(model="deepseek", confidence=0.9, reasoning="weather")
    agen = _emitter(provider, tools=ToolExecutor({"get_current_weather": weather})).stream(MESSAGES, decision, 5)

    async for event in agen:
        if event.type == "tool":
            break
    await agen.aclose()

    assert provider.calls == 1
    assert tool_calls == []


@pytest.mark.asyncio
async def test_frame_events_appends_sentinel_and_closes_source():
    closed = asyncio.Event()

    async def source():
        try:
            yield StreamEvent(type="routing", data={"model": "openai"})
            yield StreamEvent(type="done", data={"response": "hi"})
        finally:
            closed.set()

    lines = [line async for line in frame_events(source())]
    assert lines[-1] == END_OF_STREAM + "\n"
    assert json.loads(lines[0]) == {"type": "routing", "data": {"model": "openai"}}
    assert all(line.endswith("\n") for line in lines)
    assert closed.is_set()
    assert encode_event(StreamEvent(type="content", data={"text": "°"})) == '{"type": "content", "data": {"text": "°"}}\n'
