"""
Messages DAO

Purpose
-------
Data-access layer for the `Message` ORM entity. Provides:
- Message creation
- Paged retrieval by conversation (chronological, newest page first)
- Unread counting and latest-message lookup for conversation listings
- Soft deletion and ciphertext replacement for edits

Design
------
- Requires an active SQLAlchemy `Session` provided by the caller.
- Rows only ever contain ciphertext; encryption and decryption happen in
  `letschat.database.core.messages`.
- Retrieval uses a subquery for "latest-first then re-order ascending"
  semantics so a page holds the newest `limit` messages in reading order.
- Soft-deleted rows (`deleted_at` set) are excluded from every read here.
"""

from sqlalchemy.orm import Session, aliased
from letschat.database.entities.messages import Message
from letschat.database.helpers.clock import utc_now
from uuid import UUID
from sqlalchemy import desc, asc, func
from datetime import datetime
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)


class MessageDao:
    """
    Data Access Object (DAO) for encrypted messages.
    """

    def createMessage(self, session: Session, message: Message) -> Message:
        """
        Stage a new message record.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        message : Message
            Encrypted message entity.

        Returns
        -------
        Message
            The message object that was added.
        """
        try:
            session.add(message)
            session.flush()
            return message
        except Exception:
            logger.exception("Error in MessageDao.createMessage")
            raise

    def fetchMessageById(self, session: Session, message_id: UUID) -> Optional[Message]:
        """Return a non-deleted message by id, or None."""
        try:
            return (
                session.query(Message)
                .filter(Message.id == message_id, Message.deleted_at.is_(None))
                .one_or_none()
            )
        except Exception:
            logger.exception("Error in MessageDao.fetchMessageById")
            raise

    def fetchMessagesByConversationId(
        self,
        session: Session,
        conversation_id: UUID,
        limit: int = 50,
        before: Optional[datetime] = None,
    ) -> List[Message]:
        """
        Fetch one page of messages, ordered by creation time (ascending).

        Internally retrieves the latest `limit` messages first via a subquery,
        then re-orders them chronologically.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        conversation_id : UUID
            Conversation to read.
        limit : int
            Page size.
        before : datetime | None
            Only messages created strictly before this instant.

        Returns
        -------
        list[Message]
            Oldest first.
        """
        try:
            query = session.query(Message).filter(
                Message.conversation_id == conversation_id,
                Message.deleted_at.is_(None),
            )
            if before is not None:
                query = query.filter(Message.created_at < before)
            subq = query.order_by(desc(Message.created_at)).limit(limit).subquery()

            recentMessages = aliased(Message, subq)

            return (
                session.query(recentMessages)
                .order_by(asc(recentMessages.created_at))
                .all()
            )
        except Exception:
            logger.exception("Error in MessageDao.fetchMessagesByConversationId")
            raise

    def fetchLatestMessage(self, session: Session, conversation_id: UUID) -> Optional[Message]:
        try:
            return (
                session.query(Message)
                .filter(Message.conversation_id == conversation_id, Message.deleted_at.is_(None))
                .order_by(desc(Message.created_at))
                .first()
            )
        except Exception:
            logger.exception("Error in MessageDao.fetchLatestMessage")
            raise

    def countUnread(self, session: Session, conversation_id: UUID, user_id: UUID, since: Optional[datetime]) -> int:
        """
        Count messages written by others after `since`.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        conversation_id : UUID
            Conversation to inspect.
        user_id : UUID
            Reader; their own messages never count.
        since : datetime | None
            Reader's `last_read_at`; None counts everything.
        """
        try:
            query = session.query(func.count(Message.id)).filter(
                Message.conversation_id == conversation_id,
                Message.sender_id != user_id,
                Message.deleted_at.is_(None),
            )
            if since is not None:
                query = query.filter(Message.created_at > since)
            return query.scalar() or 0
        except Exception:
            logger.exception("Error in MessageDao.countUnread")
            raise

    def updateMessageContent(self, session: Session, message: Message, encrypted_content: str, iv: str, tag: str, key_version: int) -> Message:
        """Replace the ciphertext of a message and stamp `edited_at`."""
        try:
            message.encrypted_content = encrypted_content
            message.iv = iv
            message.tag = tag
            message.key_version = key_version
            message.edited_at = utc_now()
            return message
        except Exception:
            logger.exception("Error in MessageDao.updateMessageContent")
            raise

    def softDeleteMessage(self, session: Session, message: Message) -> None:
        try:
            message.deleted_at = utc_now()
        except Exception:
            logger.exception("Error in MessageDao.softDeleteMessage")
            raise
