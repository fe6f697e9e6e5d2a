from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field
from uuid import UUID

# ---------------------------------------------------------------------------
# Universal ID aliases used across the domain models
# ---------------------------------------------------------------------------
UserID = UUID
MessageID = UUID
ReportID = UUID
RecordID = UUID

__all__ = [
    "ProblemDetail",
    "UserID",
    "MessageID",
    "ReportID",
    "RecordID",
    "DegradedReasonEnum",
]


class ProblemDetail(BaseModel):
    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: Optional[str] = None
    instance: Optional[str] = None
    code: Optional[str] = None


class DegradedReasonEnum(str, Enum):
    """Why an external classifier result was replaced by a local fallback."""

    TIMEOUT = "timeout"
    ERROR = "error"
    UNCONFIGURED = "unconfigured"

