"""
Conversation ORM Models
=======================

``Conversation`` represents a direct (two-person) or group chat stored in the
``conversation`` table; ``ConversationParticipant`` is its membership join
table.

Key features
~~~~~~~~~~~~
- UUID primary keys
- ``conversation_type``: ``"direct"`` or ``"group"`` (groups carry a name)
- ``encryption_key``: the conversation's AES-256 key, wrapped with the server
  master key (see ``letschat.crypt.conversation_encryption``)
- ``key_version``: incremented by every key rotation; each message records the
  version it was encrypted under
- Timezone-aware ``created_at`` / ``updated_at``; ``updated_at`` moves on every
  new message so listings can order by recent activity

Participants carry a ``role`` (``"admin"`` | ``"member"``) and ``last_read_at``
used to compute unread counts.
"""

from letschat.database.config.connection_engine import declarativeBase
from letschat.database.helpers.clock import utc_now
from sqlalchemy import ForeignKey, DateTime, Integer, String, TEXT, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from uuid import UUID, uuid4
from datetime import datetime
from typing import Optional

CONVERSATION_TYPES = ("direct", "group")


class Conversation(declarativeBase):
    """
    ORM model for the `conversation` table.

    Attributes
    ----------
    id : UUID
        Primary key.
    conversation_type : str
        ``"direct"`` or ``"group"``.
    name : str | None
        Group name; None for direct conversations.
    description : str | None
        Optional group description.
    created_by : UUID
        Creator (FK → app_user.id).
    encryption_key : str | None
        Wrapped conversation key. Only legacy rows may be None; the service
        layer backfills them before any message is stored.
    key_version : int
        Version of ``encryption_key``.
    created_at, updated_at : datetime
        UTC timestamps.
    """

    __tablename__ = "conversation"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    conversation_type: Mapped[str] = mapped_column(String(10), nullable=False)

    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    created_by: Mapped[UUID] = mapped_column(Uuid, ForeignKey("app_user.id"), nullable=False)

    encryption_key: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    """Wrapped AES-256 key, ``v1:<nonce_b64>:<cipher_b64>``."""

    key_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, index=True
    )

    def __init__(
        self,
        conversation_type: str,
        created_by: UUID,
        encryption_key: Optional[str],
        name: Optional[str] = None,
        description: Optional[str] = None,
        conversation_id: Optional[UUID] = None,
    ):
        """
        Initialize a new Conversation object.

        Parameters
        ----------
        conversation_type : str
            ``"direct"`` or ``"group"``.
        created_by : UUID
            ID of the creating user.
        encryption_key : str | None
            Wrapped conversation key.
        name, description : str | None
            Group metadata.
        conversation_id : UUID | None
            Primary key; generated when omitted.
        """
        now = utc_now()
        self.id = conversation_id or uuid4()
        self.conversation_type = conversation_type
        self.created_by = created_by
        self.encryption_key = encryption_key
        self.key_version = 1
        self.name = name
        self.description = description
        self.created_at = now
        self.updated_at = now

    def __str__(self) -> str:
        # never print the key
        return f"Conversation: id:{self.id}, type: {self.conversation_type}, name: {self.name}, updated: {self.updated_at}"


class ConversationParticipant(declarativeBase):
    """
    ORM model for the `conversation_participant` table.

    Attributes
    ----------
    id : UUID
        Primary key.
    conversation_id : UUID
        FK → conversation.id.
    user_id : UUID
        FK → app_user.id.
    role : str
        ``"admin"`` or ``"member"``.
    joined_at : datetime
        Time the user was added (UTC).
    last_read_at : datetime | None
        Time the user last marked the conversation as read (UTC).
    """

    __tablename__ = "conversation_participant"
    __table_args__ = (UniqueConstraint("conversation_id", "user_id", name="uq_participant_conversation_user"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversation.id", ondelete="CASCADE"), nullable=False, index=True
    )

    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True
    )

    role: Mapped[str] = mapped_column(String(10), nullable=False, default="member")

    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    last_read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __init__(self, conversation_id: UUID, user_id: UUID, role: str = "member"):
        now = utc_now()
        self.id = uuid4()
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.role = role
        self.joined_at = now
        self.last_read_at = now


class ArchivedConversationKey(declarativeBase):
    """
    ORM model for the `conversation_key_archive` table.

    Keeps every key retired by a rotation so messages encrypted under an older
    ``key_version`` remain readable.
    """

    __tablename__ = "conversation_key_archive"

    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversation.id", ondelete="CASCADE"), primary_key=True
    )

    key_version: Mapped[int] = mapped_column(Integer, primary_key=True)

    encryption_key: Mapped[str] = mapped_column(TEXT, nullable=False)

    retired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __init__(self, conversation_id: UUID, key_version: int, encryption_key: str):
        self.conversation_id = conversation_id
        self.key_version = key_version
        self.encryption_key = encryption_key
        self.retired_at = utc_now()
