"""State definition for the chat pipeline graph."""

from __future__ import annotations

from typing import List, Optional, TypedDict

from weather_core.domain.models import ChatMessage
from weather_core.domain.routing import OrchestratorResponse, RoutingDecision
from weather_core.moderation.gate import ModerationVerdict


class PipelineState(TypedDict, total=False):
    """State shared across LangGraph nodes."""

    user_message: str
    session_id: str
    max_iterations: Optional[int]
    verdict: ModerationVerdict
    instructions: str
    messages: List[ChatMessage]
    last_model: Optional[str]
    decision: RoutingDecision
    response: OrchestratorResponse
