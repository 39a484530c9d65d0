from .sink import EventSink, InMemoryEventSink

__all__ = ["EventSink", "InMemoryEventSink"]
