"""Turn-based chat: upstream sessions, session cache and wire streaming."""

from cognileap.chat.session_cache import SessionCache
from cognileap.chat.stateful import ChatRequest, ChatTurn, StatefulChatHandler
from cognileap.chat.stream import StreamEmitter
from cognileap.chat.upstream import StatefulChatService

__all__ = [
    "ChatRequest",
    "ChatTurn",
    "SessionCache",
    "StatefulChatHandler",
    "StatefulChatService",
    "StreamEmitter",
]
