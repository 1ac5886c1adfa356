"""Event sink adapters."""

from capturepy.adapters.storage.in_memory import InMemoryEventSink
from capturepy.adapters.storage.ring_buffer import RingBufferEventSink

__all__ = ["InMemoryEventSink", "RingBufferEventSink"]
