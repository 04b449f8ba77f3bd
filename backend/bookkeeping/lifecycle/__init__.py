"""
Server lifecycle management
Handles startup ordering, signal-driven shutdown, and the HTTP serving loop
"""

from .orchestrator import LifecycleState, ServerAddress, ServerLifecycle, ServerPhase
from .serving import ServingLoop
from .signals import ShutdownSignal

__all__ = [
    "LifecycleState",
    "ServerAddress",
    "ServerLifecycle",
    "ServerPhase",
    "ServingLoop",
    "ShutdownSignal",
]
