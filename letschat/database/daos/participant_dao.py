"""
Participant DAO

Membership operations on `ConversationParticipant`: listing, adding (duplicates
ignored), removing, role changes and read markers.
"""

from sqlalchemy.orm import Session
from letschat.database.entities.conversations import ConversationParticipant
from letschat.database.entities.user import User
from letschat.database.helpers.clock import utc_now
from uuid import UUID
from typing import Iterable, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class ParticipantDao:
    """
    Data Access Object (DAO) for conversation memberships.
    """

    def fetchParticipant(self, session: Session, conversation_id: UUID, user_id: UUID) -> Optional[ConversationParticipant]:
        try:
            return (
                session.query(ConversationParticipant)
                .filter(
                    ConversationParticipant.conversation_id == conversation_id,
                    ConversationParticipant.user_id == user_id,
                )
                .one_or_none()
            )
        except Exception:
            logger.exception("Error in ParticipantDao.fetchParticipant")
            raise

    def fetchParticipants(self, session: Session, conversation_id: UUID) -> List[Tuple[ConversationParticipant, User]]:
        """
        List the members of a conversation with their user rows.

        Returns
        -------
        list[(ConversationParticipant, User)]
            Ordered by join time, earliest first.
        """
        try:
            return (
                session.query(ConversationParticipant, User)
                .join(User, User.id == ConversationParticipant.user_id)
                .filter(ConversationParticipant.conversation_id == conversation_id)
                .order_by(ConversationParticipant.joined_at, User.username)
                .all()
            )
        except Exception:
            logger.exception("Error in ParticipantDao.fetchParticipants")
            raise

    def fetchParticipantIds(self, session: Session, conversation_id: UUID) -> List[UUID]:
        try:
            rows = (
                session.query(ConversationParticipant.user_id)
                .filter(ConversationParticipant.conversation_id == conversation_id)
                .all()
            )
            return [row[0] for row in rows]
        except Exception:
            logger.exception("Error in ParticipantDao.fetchParticipantIds")
            raise

    def addParticipants(self, session: Session, conversation_id: UUID, user_ids: Iterable[UUID], role: str = "member") -> List[UUID]:
        """
        Add users to a conversation, skipping those already present.

        Returns
        -------
        list[UUID]
            Ids that were actually added.
        """
        try:
            existing = set(self.fetchParticipantIds(session, conversation_id))
            added = []
            for user_id in user_ids:
                if user_id in existing:
                    continue
                existing.add(user_id)
                session.add(ConversationParticipant(conversation_id=conversation_id, user_id=user_id, role=role))
                added.append(user_id)
            session.flush()
            return added
        except Exception:
            logger.exception("Error in ParticipantDao.addParticipants")
            raise

    def removeParticipant(self, session: Session, conversation_id: UUID, user_id: UUID) -> bool:
        """Delete a membership; returns False if the user was not a member."""
        try:
            removed = (
                session.query(ConversationParticipant)
                .filter(
                    ConversationParticipant.conversation_id == conversation_id,
                    ConversationParticipant.user_id == user_id,
                )
                .delete(synchronize_session=False)
            )
            return removed > 0
        except Exception:
            logger.exception("Error in ParticipantDao.removeParticipant")
            raise

    def updateRole(self, session: Session, conversation_id: UUID, user_id: UUID, role: str) -> None:
        try:
            participant = self.fetchParticipant(session, conversation_id, user_id)
            if participant is not None:
                participant.role = role
        except Exception:
            logger.exception("Error in ParticipantDao.updateRole")
            raise

    def updateLastRead(self, session: Session, conversation_id: UUID, user_id: UUID, timestamp=None) -> None:
        try:
            participant = self.fetchParticipant(session, conversation_id, user_id)
            if participant is not None:
                participant.last_read_at = timestamp or utc_now()
        except Exception:
            logger.exception("Error in ParticipantDao.updateLastRead")
            raise
