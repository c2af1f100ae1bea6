"""Adapters package - Bridge between the engine and the chat layer.

Delivery sinks, the event bus feeding SSE clients, and file delivery
checks.
"""
from __future__ import annotations

__all__ = [
    "BridgeEvent",
    "ConsoleSink",
    "DeliverySink",
    "EventBus",
    "check_deliverable",
]

from agent_bridge.adapters.event_bus import BridgeEvent, EventBus
from agent_bridge.adapters.file_delivery import check_deliverable
from agent_bridge.adapters.sink import ConsoleSink, DeliverySink
