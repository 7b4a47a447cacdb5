"""
Pydantic models used for request validation and API data contracts.

Each class defines the structure of data expected in API endpoints, ensuring
validation and automatic OpenAPI schema generation. Length and format rules
that belong to the domain (username pattern, password policy, message size)
are enforced by the service layer so REST and WebSocket callers share them.
"""

from pydantic import BaseModel, Field
from typing import Any, List, Literal, Optional
from uuid import UUID


class UserCredentials(BaseModel):
    """
    Represents login credentials for a user.
    """
    username: str
    """The username of the user"""
    password: str
    """The plaintext password provided for authentication."""


class UserData(UserCredentials):
    """
    Represents the details needed to register a user.
    """
    display_name: Optional[str] = None
    """Optional display name (at most 50 characters)."""


class ProfileUpdate(BaseModel):
    """Fields of a profile update; omitted fields are left unchanged."""
    display_name: Optional[str] = None
    status: Optional[Literal["online", "offline", "away", "busy"]] = None


class ConversationCreationDetails(BaseModel):
    """
    Represents details needed to create a new conversation.
    """
    type: Literal["direct", "group"]
    """Conversation kind."""
    participant_ids: List[UUID] = Field(default_factory=list)
    """Users to add besides the creator (exactly one for direct conversations)."""
    name: Optional[str] = None
    """Group name, required for groups."""
    description: Optional[str] = None


class UpdateConversationDetails(BaseModel):
    """
    Represents details required to update an existing group conversation.
    """
    name: Optional[str] = None
    description: Optional[str] = None


class ParticipantsAddition(BaseModel):
    user_ids: List[UUID]
    """Users to add to a group conversation."""


class NewMessage(BaseModel):
    """
    Represents a new message to be created in a conversation.
    """
    content: str
    """Plaintext content; encrypted before it is stored."""
    content_type: Literal["text"] = "text"
    reply_to_id: Optional[UUID] = None
    """Optional message this one replies to."""


class MessageEdit(BaseModel):
    content: str


class ErrorDetail(BaseModel):
    code: str
    message: str


class Envelope(BaseModel):
    """
    Response envelope shared by every JSON endpoint::

        {"success": true, "data": {...}}
        {"success": false, "error": {"code": "...", "message": "..."}}
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorDetail] = None
