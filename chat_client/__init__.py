"""
Client-side session for the negotiation chat.

``ChatAPI`` talks to the REST surface, ``ChatSession`` owns one open
conversation (socket room, local timeline, optimistic sends) and
``UnreadTracker`` keeps the global badge in step.
"""
from .api import ChatAPI, ChatAPIError
from .session import ChatSession, UnreadTracker
from .timeline import PendingMessage, Timeline, TimelineEntry, merge_timeline, total_unread

__all__ = [
    "ChatAPI",
    "ChatAPIError",
    "ChatSession",
    "PendingMessage",
    "Timeline",
    "TimelineEntry",
    "UnreadTracker",
    "merge_timeline",
    "total_unread",
]
