"""
Conversation DAO

Purpose
-------
Data-access layer for the `Conversation` ORM entity and its retired keys.
Provides:
- Conversation creation together with its initial participants
- Lookups by id, by participant (most recently active first) and the direct
  conversation shared by two users
- Updates to name/description, activity timestamp and encryption key
- Archive of keys retired by rotation

Design
------
- Requires an active SQLAlchemy `Session` provided by the caller.
- The DAO stores whatever `encryption_key` it is given; generating and
  wrapping keys is the job of `letschat.database.core.conversation_encryption`.

Usage
-----
.. code-block:: python

    dao = ConversationDao()
    conversation = Conversation(conversation_type="group", created_by=creator.id,
                                encryption_key=wrapped, name="Team")
    dao.createConversation(session, conversation, participants=[(creator.id, "admin"), (other.id, "member")])
    items = dao.fetchConversationsByUserId(session, creator.id)

Error Handling
--------------
- Methods log the error with its traceback and re-raise.
- `update*` methods use `.one()`, which raises `NoResultFound` when the
  conversation does not exist.
"""

from sqlalchemy.orm import Session, aliased
from letschat.database.entities.conversations import Conversation, ConversationParticipant, ArchivedConversationKey
from letschat.database.helpers.clock import utc_now
from uuid import UUID
from sqlalchemy import desc
from typing import Iterable, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class ConversationDao:
    """
    Data Access Object (DAO) for managing Conversation entities.
    """

    def createConversation(
        self,
        session: Session,
        conversation: Conversation,
        participants: Iterable[Tuple[UUID, str]],
    ) -> Conversation:
        """
        Insert a conversation and its initial participants.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        conversation : Conversation
            Entity to insert; its `encryption_key` should already be populated.
        participants : iterable of (user_id, role)
            Initial members. Duplicate user ids keep their first role.

        Returns
        -------
        Conversation
            The inserted entity.
        """
        try:
            session.add(conversation)
            seen = set()
            for user_id, role in participants:
                if user_id in seen:
                    continue
                seen.add(user_id)
                session.add(ConversationParticipant(conversation_id=conversation.id, user_id=user_id, role=role))
            session.flush()
            return conversation
        except Exception:
            logger.exception("Error in ConversationDao.createConversation")
            raise

    def fetchConversationById(self, session: Session, conversation_id: UUID) -> Optional[Conversation]:
        try:
            return session.get(Conversation, conversation_id)
        except Exception:
            logger.exception("Error in ConversationDao.fetchConversationById")
            raise

    def fetchConversationForParticipant(self, session: Session, conversation_id: UUID, user_id: UUID) -> Optional[Conversation]:
        """
        Return the conversation only if `user_id` participates in it.

        Returns
        -------
        Conversation | None
            None both when the conversation does not exist and when the user
            is not a participant.
        """
        try:
            return (
                session.query(Conversation)
                .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
                .filter(Conversation.id == conversation_id, ConversationParticipant.user_id == user_id)
                .one_or_none()
            )
        except Exception:
            logger.exception("Error in ConversationDao.fetchConversationForParticipant")
            raise

    def fetchConversationsByUserId(self, session: Session, user_id: UUID) -> List[Conversation]:
        """
        Fetch all conversations a user participates in, most recently active first.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        user_id : UUID
            Participant id.

        Returns
        -------
        list[Conversation]
            Ordered by `updated_at` descending.
        """
        try:
            return (
                session.query(Conversation)
                .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
                .filter(ConversationParticipant.user_id == user_id)
                .order_by(desc(Conversation.updated_at))
                .all()
            )
        except Exception:
            logger.exception("Error in ConversationDao.fetchConversationsByUserId")
            raise

    def fetchDirectConversation(self, session: Session, user_a: UUID, user_b: UUID) -> Optional[Conversation]:
        """Return the direct conversation shared by two users, if one exists."""
        first = aliased(ConversationParticipant)
        second = aliased(ConversationParticipant)
        try:
            return (
                session.query(Conversation)
                .join(first, first.conversation_id == Conversation.id)
                .join(second, second.conversation_id == Conversation.id)
                .filter(
                    Conversation.conversation_type == "direct",
                    first.user_id == user_a,
                    second.user_id == user_b,
                )
                .first()
            )
        except Exception:
            logger.exception("Error in ConversationDao.fetchDirectConversation")
            raise

    def fetchConversationsWithoutKey(self, session: Session) -> List[Conversation]:
        """Legacy conversations created before keys were mandatory."""
        try:
            return session.query(Conversation).filter(Conversation.encryption_key.is_(None)).all()
        except Exception:
            logger.exception("Error in ConversationDao.fetchConversationsWithoutKey")
            raise

    def updateConversationDetails(self, session: Session, conversation_id: UUID, **fields) -> Conversation:
        """Set name and/or description of a conversation and bump `updated_at`."""
        try:
            conversation = session.query(Conversation).filter(Conversation.id == conversation_id).one()
            for name, value in fields.items():
                setattr(conversation, name, value)
            conversation.updated_at = utc_now()
            return conversation
        except Exception:
            logger.exception("Error in ConversationDao.updateConversationDetails")
            raise

    def updateConversationByDate(self, session: Session, conversation_id: UUID, timestamp=None) -> None:
        """
        Move the activity timestamp of a conversation.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        conversation_id : UUID
            Conversation to touch.
        timestamp : datetime | None
            New `updated_at`; defaults to now.
        """
        try:
            conversation = session.query(Conversation).filter(Conversation.id == conversation_id).one()
            conversation.updated_at = timestamp or utc_now()
        except Exception:
            logger.exception("Error in ConversationDao.updateConversationByDate")
            raise

    def updateEncryptionKey(self, session: Session, conversation_id: UUID, encryption_key: str, key_version: int) -> None:
        try:
            conversation = session.query(Conversation).filter(Conversation.id == conversation_id).one()
            conversation.encryption_key = encryption_key
            conversation.key_version = key_version
        except Exception:
            logger.exception("Error in ConversationDao.updateEncryptionKey")
            raise

    def archiveKey(self, session: Session, conversation_id: UUID, key_version: int, encryption_key: str) -> None:
        """Keep a retired key so messages of that version stay readable."""
        try:
            session.add(
                ArchivedConversationKey(
                    conversation_id=conversation_id, key_version=key_version, encryption_key=encryption_key
                )
            )
        except Exception:
            logger.exception("Error in ConversationDao.archiveKey")
            raise

    def fetchArchivedKey(self, session: Session, conversation_id: UUID, key_version: int) -> Optional[str]:
        try:
            row = session.get(ArchivedConversationKey, (conversation_id, key_version))
            return row.encryption_key if row else None
        except Exception:
            logger.exception("Error in ConversationDao.fetchArchivedKey")
            raise
