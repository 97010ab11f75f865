"""In-memory approval queue

Messages move ``pending -> approved | rejected``. Decisions on messages
submitted with ``requiresResponse`` produce a decision payload that the
channel broadcasts to every connected client.
"""

import logging
import secrets
import time
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from settings import APPROVAL_ALLOW_REDECIDE, AUTO_APPROVE_RISK_LEVEL
from utils.events import EventHooks
from .models import ApprovalMessage, DecisionPayload

logger = logging.getLogger(__name__)

RISK_LEVEL_ORDER = ("never", "low", "medium", "high")
SECURITY_EVALUATION_TITLE = "Security Evaluation Request"
NO_BODY = "no body"


def build_decision_payload(message: ApprovalMessage, decided_at: Optional[int] = None) -> Dict[str, Any]:
    """Build the decision broadcast for a decided message

    The original body is echoed only for approved messages that carried one.
    """
    if message.status == "approved" and message.body:
        body = message.body
    else:
        body = NO_BODY
    payload = DecisionPayload(
        id=message.id,
        status=message.status,
        feedback=message.feedback,
        timestamp=decided_at if decided_at is not None else int(time.time() * 1000),
        originalMessage={"id": message.id, "title": message.title, "body": body},
    )
    return payload.model_dump()


class ApprovalQueue:
    """Holds approval messages for the current session

    Observers:
        ``message`` receives each stored ApprovalMessage after submit.
        ``decision`` receives ``(message, payload)`` after a decision;
        payload is None when the message does not require a response.
    """

    def __init__(
        self,
        allow_redecide: bool = APPROVAL_ALLOW_REDECIDE,
        auto_approve_risk_level: str = AUTO_APPROVE_RISK_LEVEL,
        hooks: Optional[EventHooks] = None,
    ):
        self.allow_redecide = allow_redecide
        if auto_approve_risk_level not in RISK_LEVEL_ORDER:
            logger.warning(f"Unknown auto-approve level '{auto_approve_risk_level}', using 'never'")
            auto_approve_risk_level = "never"
        self.auto_approve_risk_level = auto_approve_risk_level
        self.hooks = hooks or EventHooks()
        self._messages: Dict[str, ApprovalMessage] = {}

    def on_message(self, callback):
        return self.hooks.on("message", callback)

    def on_decision(self, callback):
        return self.hooks.on("decision", callback)

    def submit(self, data: Dict[str, Any]) -> Optional[ApprovalMessage]:
        """Store an incoming approval request

        Args:
            data: Raw message fields from the client

        Returns:
            The stored message, or None if the data is not a valid message
        """
        data = dict(data)
        data.pop("type", None)
        data.setdefault("id", secrets.token_hex(16))
        if not data.get("timestamp"):
            data["timestamp"] = int(time.time() * 1000)
        if not data.get("status"):
            data["status"] = "pending"

        try:
            message = ApprovalMessage.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid approval message: {e.error_count()} validation error(s)")
            return None

        # Insertion order is kept; a resubmitted id replaces the old entry in place
        self._messages[message.id] = message
        logger.info(f"Received approval request {message.id}: {message.title}")
        self.hooks.emit("message", message)
        return message

    def should_auto_approve(self, message: ApprovalMessage) -> bool:
        """Security evaluations at or below the configured risk level skip the user"""
        if self.auto_approve_risk_level == "never":
            return False
        if message.title != SECURITY_EVALUATION_TITLE or message.risk_level not in RISK_LEVEL_ORDER:
            return False
        threshold = RISK_LEVEL_ORDER.index(self.auto_approve_risk_level)
        return 0 < RISK_LEVEL_ORDER.index(message.risk_level) <= threshold

    def decide(
        self,
        message_id: str,
        status: str,
        feedback: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Record a decision for a message

        Unknown ids are ignored. The status is mutated before observers run.

        Args:
            message_id: Id of the message to decide
            status: "approved" or "rejected"
            feedback: Optional note for the requester

        Returns:
            Decision payload to broadcast, or None when nothing should be sent
        """
        if status not in ("approved", "rejected"):
            raise ValueError(f"Invalid decision status: {status}")

        message = self._messages.get(message_id)
        if message is None:
            logger.debug(f"Ignoring decision for unknown message {message_id}")
            return None

        if message.status != "pending" and not self.allow_redecide:
            logger.warning(f"Message {message_id} already {message.status}, ignoring new decision")
            return None

        message.status = status
        message.feedback = feedback
        message.read = True
        logger.info(f"Message {message_id} {status}")

        payload = build_decision_payload(message) if message.requires_response else None
        self.hooks.emit("decision", message, payload)
        return payload

    def get(self, message_id: str) -> Optional[ApprovalMessage]:
        return self._messages.get(message_id)

    def list_messages(self, status: Optional[str] = None) -> List[ApprovalMessage]:
        messages = list(self._messages.values())
        if status:
            messages = [m for m in messages if m.status == status]
        return messages

    @property
    def pending_count(self) -> int:
        return sum(1 for m in self._messages.values() if m.status == "pending")

    def mark_read(self, message_id: str):
        message = self._messages.get(message_id)
        if message is not None:
            message.read = True

    def delete(self, message_id: str) -> bool:
        return self._messages.pop(message_id, None) is not None

    def clear(self):
        self._messages.clear()
