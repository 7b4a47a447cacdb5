"""
Message ORM Model
=================

The ``Message`` ORM model represents a single encrypted message within a
conversation. There is no plaintext column: the body is stored as AES-256-GCM
``encrypted_content`` with its ``iv`` (nonce) and authentication ``tag``, all
hex encoded, together with the ``key_version`` of the conversation key used.

Key features
~~~~~~~~~~~~
- UUID primary key (``id``)
- Foreign keys to ``conversation.id`` and ``app_user.id`` (sender)
- ``content_type``: ``"text"`` or ``"system"``
- Optional ``reply_to_id`` pointing at another message of the same conversation
- Soft deletion through ``deleted_at``; edits stamp ``edited_at``
"""

from letschat.database.config.connection_engine import declarativeBase
from letschat.database.helpers.clock import utc_now
from sqlalchemy import ForeignKey, DateTime, Index, Integer, String, TEXT, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from uuid import UUID, uuid4
from datetime import datetime
from typing import Optional

CONTENT_TYPES = ("text", "system")


class Message(declarativeBase):
    """
    ORM model for the `message` table.

    Attributes
    ----------
    id : UUID
        Primary key.
    conversation_id : UUID
        Conversation the message belongs to.
    sender_id : UUID
        Author of the message.
    content_type : str
        ``"text"`` or ``"system"``.
    encrypted_content : str
        Hex AES-GCM ciphertext (without tag).
    iv : str
        Hex 96-bit nonce.
    tag : str
        Hex 128-bit authentication tag.
    key_version : int
        Conversation key version used for encryption.
    reply_to_id : UUID | None
        Message this one replies to.
    edited_at, deleted_at : datetime | None
        Edit / soft-delete timestamps.
    created_at : datetime
        Send time (UTC).
    """

    __tablename__ = "message"
    __table_args__ = (Index("ix_message_conversation_created", "conversation_id", "created_at"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversation.id", ondelete="CASCADE"), nullable=False
    )

    sender_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("app_user.id"), nullable=False)

    content_type: Mapped[str] = mapped_column(String(10), nullable=False, default="text")

    encrypted_content: Mapped[str] = mapped_column(TEXT, nullable=False)

    iv: Mapped[str] = mapped_column(String(64), nullable=False)

    tag: Mapped[str] = mapped_column(String(64), nullable=False)

    key_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    reply_to_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("message.id"), nullable=True)

    edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __init__(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        encrypted_content: str,
        iv: str,
        tag: str,
        key_version: int,
        content_type: str = "text",
        reply_to_id: Optional[UUID] = None,
        message_id: Optional[UUID] = None,
    ):
        """
        Initialize a new Message object.

        Parameters
        ----------
        conversation_id : UUID
            ID of the conversation this message belongs to.
        sender_id : UUID
            ID of the author.
        encrypted_content, iv, tag : str
            Hex-encoded AES-GCM output.
        key_version : int
            Conversation key version used to encrypt.
        content_type : str
            ``"text"`` or ``"system"``.
        reply_to_id : UUID | None
            Optional parent message.
        message_id : UUID | None
            Primary key; generated when omitted.
        """
        self.id = message_id or uuid4()
        self.conversation_id = conversation_id
        self.sender_id = sender_id
        self.encrypted_content = encrypted_content
        self.iv = iv
        self.tag = tag
        self.key_version = key_version
        self.content_type = content_type
        self.reply_to_id = reply_to_id
        self.edited_at = None
        self.deleted_at = None
        self.created_at = utc_now()

    def __str__(self) -> str:
        return (
            f"Message: id:{self.id}, "
            f"conversation: {self.conversation_id}, "
            f"sender: {self.sender_id}, "
            f"time_created: {self.created_at}"
        )
