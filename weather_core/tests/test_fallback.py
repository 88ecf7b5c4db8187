import pytest

from weather_core.config.settings import Settings
from weather_core.domain.exceptions import NetworkError
from weather_core.domain.models import ChatChoice, ChatMessage, ChatResult
from weather_core.domain.routing import RoutingDecision
from weather_core.orchestrator.agent_loop import AgentLoopExecutor
from weather_core.orchestrator.fallback import APOLOGY_RESPONSE, FallbackCoordinator
from weather_core.tools.definitions import ToolCall
from weather_core.tools.executor import ToolExecutor


class FakeProvider:
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


async def _noop_tool(args):
    return {"ok": True}


def _coordinator(*providers):
    executor = AgentLoopExecutor(
        providers={p.name: p for p in providers},
        tool_executor=ToolExecutor({"get_current_weather": _noop_tool}),
        cfg=Settings(stream_word_delay=0),
    )
    return FallbackCoordinator(executor)


MESSAGES = [ChatMessage(role="user", content="Will it rain in Paris?")]
NET_DOWN = NetworkError(code="NETWORK_ERROR", message="connection refused")


@pytest.mark.asyncio
async def test_primary_success_has_no_fallback():
    primary = FakeProvider("deepseek", [ChatMessage(role="assistant", content="No rain expected.")])
    decision = RoutingDecision(model="deepseek", confidence=0.9, reasoning="weather", fallback_model="openai")
    resp = await _coordinator(primary).execute(MESSAGES, decision, 5)
    assert resp.success
    assert not resp.fallback_used
    assert resp.model_used == "deepseek"
    assert resp.model_display_name == "DeepSeek V3"
    assert resp.routing_reasoning == "weather"
    assert resp.error is None


@pytest.mark.asyncio
async def test_fallback_used_when_primary_fails():
    primary = FakeProvider(
        "deepseek",
        [
            ChatMessage(
                role="assistant",
                content=None,
                tool_calls=[ToolCall(id="c1", name="get_current_weather", arguments={"location": "Paris"})],
            ),
            NET_DOWN,
        ],
    )
    fallback = FakeProvider("openai", [ChatMessage(role="assistant", content="Light showers later.")])
    decision = RoutingDecision(model="deepseek", confidence=0.8, reasoning="weather", fallback_model="openai")

    resp = await _coordinator(primary, fallback).execute(MESSAGES, decision, 5)
    assert resp.success
    assert resp.fallback_used
    assert resp.model_used == "openai"
    assert resp.model_display_name == "GPT-3.5 Turbo"
    assert resp.response == "Light showers later."
    assert resp.error == "connection refused"
    assert resp.to_dict()["fallbackUsed"] is True

    # 回退模型只看到原始消息，主模型的工具历史被丢弃
    fallback_msgs = fallback.requests[0].messages
    assert [m.role for m in fallback_msgs] == ["system", "user"]
    assert resp.tool_calls_made == []


@pytest.mark.asyncio
async def test_apology_without_fallback():
    primary = FakeProvider("openai", [NET_DOWN])
    decision = RoutingDecision(model="openai", confidence=0.5, reasoning="r", fallback_model=None)
    resp = await _coordinator(primary).execute(MESSAGES, decision, 5)
    assert not resp.success
    assert not resp.fallback_used
    assert resp.response == APOLOGY_RESPONSE
    assert resp.to_dict()["success"] is False


@pytest.mark.asyncio
async def test_apology_when_fallback_also_fails():
    primary = FakeProvider("openai", [NET_DOWN])
    fallback = FakeProvider("deepseek", [RuntimeError("also down")])
    decision = RoutingDecision(model="openai", confidence=0.5, reasoning="r", fallback_model="deepseek")
    resp = await _coordinator(primary, fallback).execute(MESSAGES, decision, 5)
    assert not resp.success
    assert resp.fallback_used
    assert resp.response == APOLOGY_RESPONSE
    assert "also down" in resp.error


def test_routing_decision_invariants():
    d = RoutingDecision(model="openai", confidence=1.7, reasoning="x", fallback_model="openai")
    assert d.confidence == 1.0
    assert d.fallback_model is None
