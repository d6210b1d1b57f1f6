"""
Live race chat: batch merge state and the per-track broadcast hub.
"""
from .batching import ChatFeed
from .hub import ChatHub, topic_for

__all__ = ["ChatFeed", "ChatHub", "topic_for"]
