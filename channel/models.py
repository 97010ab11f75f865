"""
Pydantic models for approval channel messages.
"""
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

MessageStatus = Literal["pending", "approved", "rejected"]


class ApprovalMessage(BaseModel):
    """Approval request submitted by a local process

    Unknown fields are preserved and echoed back to clients.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    title: str
    body: Optional[str] = None
    explanation: Optional[str] = None
    code: Optional[str] = None
    risk_level: Optional[str] = None
    priority: Optional[str] = None
    status: MessageStatus = "pending"
    feedback: Optional[str] = None
    requires_response: bool = Field(default=False, alias="requiresResponse")
    timestamp: Optional[int] = None
    sender: Optional[str] = None
    read: bool = False

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with the camelCase names clients use"""
        return self.model_dump(by_alias=True, exclude_none=True)


class DecisionPayload(BaseModel):
    """Decision broadcast to every connected client"""
    id: str
    status: MessageStatus
    feedback: Optional[str] = None
    timestamp: int
    originalMessage: Dict[str, Any]
