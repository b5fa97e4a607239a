"""Conversation orchestration engine.

The worker (``engine.orchestrator``) streams completions and dispatches tool
calls; the consumer (``engine.runtime``) applies the events it delivers
through the channel to the session. Only the leaf modules are re-exported
here so that submodules can be imported independently.
"""

from relay_server.engine.channel import Envelope, EventChannel, TurnEmitter
from relay_server.engine.events import EngineEvent, FinishReason, Finished

__all__ = [
    "EngineEvent",
    "Envelope",
    "EventChannel",
    "FinishReason",
    "Finished",
    "TurnEmitter",
]
