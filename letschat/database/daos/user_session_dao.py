"""
User Session DAO

Persistence for `UserSession` rows: one per issued JWT, keyed by the SHA-256
hash of the token. Lookups ignore expired rows; `deleteExpiredSessions` purges
them.
"""

from sqlalchemy import func
from sqlalchemy.orm import Session
from letschat.database.entities.user_session import UserSession
from letschat.database.helpers.clock import utc_now
from uuid import UUID
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class UserSessionDao:
    """
    Data Access Object (DAO) for login sessions.
    """

    def createSession(self, session: Session, user_session: UserSession) -> UserSession:
        try:
            session.add(user_session)
            return user_session
        except Exception:
            logger.exception("Error in UserSessionDao.createSession")
            raise

    def fetchActiveSession(self, session: Session, token_hash: str) -> Optional[UserSession]:
        """
        Return the unexpired session for a token hash.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        token_hash : str
            SHA-256 hex digest of the JWT.

        Returns
        -------
        UserSession | None
            The session if it exists and has not expired.
        """
        try:
            return (
                session.query(UserSession)
                .filter(UserSession.token_hash == token_hash, UserSession.expires_at > utc_now())
                .one_or_none()
            )
        except Exception:
            logger.exception("Error in UserSessionDao.fetchActiveSession")
            raise

    def countActiveSessions(self, session: Session, user_id: UUID) -> int:
        """Number of unexpired sessions a user still holds."""
        try:
            return (
                session.query(func.count(UserSession.id))
                .filter(UserSession.user_id == user_id, UserSession.expires_at > utc_now())
                .scalar()
            )
        except Exception:
            logger.exception("Error in UserSessionDao.countActiveSessions")
            raise

    def deleteSession(self, session: Session, token_hash: str) -> Optional[UUID]:
        """Delete the session of a token hash and return its user id (None if unknown)."""
        try:
            row = session.query(UserSession).filter(UserSession.token_hash == token_hash).one_or_none()
            if row is None:
                return None
            user_id = row.user_id
            session.delete(row)
            return user_id
        except Exception:
            logger.exception("Error in UserSessionDao.deleteSession")
            raise

    def deleteUserSessions(self, session: Session, user_id: UUID) -> int:
        """Delete every session of a user; returns the number of rows removed."""
        try:
            return (
                session.query(UserSession)
                .filter(UserSession.user_id == user_id)
                .delete(synchronize_session=False)
            )
        except Exception:
            logger.exception("Error in UserSessionDao.deleteUserSessions")
            raise

    def deleteExpiredSessions(self, session: Session) -> int:
        try:
            return (
                session.query(UserSession)
                .filter(UserSession.expires_at <= utc_now())
                .delete(synchronize_session=False)
            )
        except Exception:
            logger.exception("Error in UserSessionDao.deleteExpiredSessions")
            raise
