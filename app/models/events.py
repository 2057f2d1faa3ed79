# =============================================================================
# Stream Event Models — What the Client Sees on the Event Stream
# =============================================================================
#
# Every data message on the stream carries one JSON object from the models
# below, discriminated by `type`:
#
#   status          {type, stage, message}
#   agent_start     {type, agent, message}
#   agent_complete  {type, agent, message, degraded}
#   delta           {type, delta}
#   complete        {type, answer, done: true}        ← terminal
#   error           {type, message}                   ← terminal
#
# Ping frames are SSE comments sent by EventSourceResponse and carry no JSON.
# =============================================================================

from typing import Literal

from pydantic import BaseModel
from sse_starlette.sse import ServerSentEvent


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    stage: str
    message: str


class AgentStartEvent(BaseModel):
    type: Literal["agent_start"] = "agent_start"
    agent: str
    message: str


class AgentCompleteEvent(BaseModel):
    type: Literal["agent_complete"] = "agent_complete"
    agent: str
    message: str
    degraded: bool = False


class DeltaEvent(BaseModel):
    type: Literal["delta"] = "delta"
    delta: str


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    answer: str
    done: bool = True


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


StreamEvent = (
    StatusEvent
    | AgentStartEvent
    | AgentCompleteEvent
    | DeltaEvent
    | CompleteEvent
    | ErrorEvent
)

TERMINAL_EVENTS = (CompleteEvent, ErrorEvent)

OPEN_COMMENT = "connected"


def to_sse(event: BaseModel) -> ServerSentEvent:
    """Wrap one event model as an SSE data message."""
    return ServerSentEvent(data=event.model_dump_json())
