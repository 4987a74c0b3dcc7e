"""
Pydantic models for refdesk API requests and responses.
This module defines the request and response schemas used by the refdesk API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from refdesk.core.schema import ModelTokenUsage


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., description="User message for the reference desk agent")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    session_id: str
    token_usage: Dict[str, ModelTokenUsage] = Field(default_factory=dict)
    tools_used: List[str] = Field(default_factory=list)


class DispatchRequest(BaseModel):
    """A message routed by kind through the dispatch table."""

    kind: str = Field(..., description="Message kind, e.g. 'message' or 'end'")
    session_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
