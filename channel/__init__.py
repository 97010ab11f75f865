"""Local approval channel: connection key, approval queue and WebSocket server"""

from .approvals import ApprovalQueue, build_decision_payload
from .key_manager import ConnectionKeyManager, KeyRecord
from .models import ApprovalMessage
from .server import ApprovalChannel, ChannelServer, build_app, is_loopback_address

__all__ = [
    "ApprovalQueue",
    "ApprovalMessage",
    "ApprovalChannel",
    "ChannelServer",
    "ConnectionKeyManager",
    "KeyRecord",
    "build_app",
    "build_decision_payload",
    "is_loopback_address",
]
