"""
User DAO

Purpose
-------
Thin data-access layer for the `User` ORM entity. Provides:
- Creation
- Lookup by id, username (case-insensitive) and id lists
- Username search
- Presence (status / last_seen) and profile updates

Design
------
- The DAO expects an active SQLAlchemy `Session` supplied by the caller
  (normally injected by `@transactional` in the service layer).
- Business logic (validation, authorization) lives in `letschat.database.core`;
  the DAO focuses on persistence operations.
- Passwords arrive already hashed; see `letschat.crypt.encrypt_decrypt`.

Error Handling
--------------
- Each method logs the failure with its traceback and re-raises.
"""

from sqlalchemy.orm import Session
from letschat.database.entities.user import User
from letschat.database.helpers.clock import utc_now
from uuid import UUID
from typing import Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)


class UserDao:
    """
    Data Access Object (DAO) for managing User entities.
    """

    def createUser(self, session: Session, user_data: User) -> User:
        """
        Stage a new user for insertion.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        user_data : User
            User entity with an already-hashed password.

        Returns
        -------
        User
            The staged entity.
        """
        try:
            session.add(user_data)
            session.flush()
            return user_data
        except Exception:
            logger.exception("Error in UserDao.createUser")
            raise

    def fetchUserById(self, session: Session, user_id: UUID) -> Optional[User]:
        """Return the user with the given id, or None."""
        try:
            return session.get(User, user_id)
        except Exception:
            logger.exception("Error in UserDao.fetchUserById")
            raise

    def fetchUser(self, session: Session, username: str) -> Optional[User]:
        """
        Fetch a user by username.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        username : str
            Username in any case; usernames are stored lower-case.

        Returns
        -------
        User | None
            The matching user, if any.
        """
        try:
            return session.query(User).filter(User.username == username.strip().lower()).one_or_none()
        except Exception:
            logger.exception("Error in UserDao.fetchUser")
            raise

    def fetchUsersByIds(self, session: Session, user_ids: Iterable[UUID]) -> List[User]:
        """Return every user whose id is in `user_ids` (unknown ids are skipped)."""
        ids = list(set(user_ids))
        if not ids:
            return []
        try:
            return session.query(User).filter(User.id.in_(ids)).all()
        except Exception:
            logger.exception("Error in UserDao.fetchUsersByIds")
            raise

    def searchUsers(self, session: Session, query: str, limit: int, exclude_user_id: Optional[UUID] = None) -> List[User]:
        """
        Case-insensitive substring search on usernames and display names.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        query : str
            Search fragment. LIKE wildcards in it are matched literally.
        limit : int
            Maximum number of rows.
        exclude_user_id : UUID | None
            Typically the requester, who should not find themselves.

        Returns
        -------
        list[User]
            Matches ordered by username.
        """
        escaped = query.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        try:
            q = session.query(User).filter(
                User.username.like(pattern, escape="\\") | User.display_name.ilike(pattern, escape="\\")
            )
            if exclude_user_id is not None:
                q = q.filter(User.id != exclude_user_id)
            return q.order_by(User.username).limit(limit).all()
        except Exception:
            logger.exception("Error in UserDao.searchUsers")
            raise

    def updateStatus(self, session: Session, user_id: UUID, status: str) -> None:
        """
        Set the presence status of a user and refresh `last_seen`.

        Raises
        ------
        NoResultFound
            If the user does not exist.
        """
        try:
            user = session.query(User).filter(User.id == user_id).one()
            user.status = status
            user.last_seen = utc_now()
        except Exception:
            logger.exception("Error in UserDao.updateStatus")
            raise

    def updateProfile(self, session: Session, user_id: UUID, **fields) -> User:
        """Apply the given column values to a user and bump `updated_at`."""
        try:
            user = session.query(User).filter(User.id == user_id).one()
            for name, value in fields.items():
                setattr(user, name, value)
            user.updated_at = utc_now()
            return user
        except Exception:
            logger.exception("Error in UserDao.updateProfile")
            raise
