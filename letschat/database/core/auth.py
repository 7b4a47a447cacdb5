"""
Service-layer operations for authentication, sessions and user profiles.

All database functions are wrapped with the `@transactional` decorator, which
manages SQLAlchemy sessions and transactions automatically; callers pass every
argument by keyword.

Tokens are JWTs (see `letschat.api.utils`). Each issued token is backed by a
`UserSession` row holding its SHA-256 hash, so logging out revokes it even
before it expires.
"""

from letschat.database.helpers.transactionManagement import transactional
from letschat.database.helpers.clock import isoformat, utc_now
from letschat.database.daos.user_dao import UserDao
from letschat.database.daos.user_session_dao import UserSessionDao
from letschat.database.entities.user import User, USER_STATUSES
from letschat.database.entities.user_session import UserSession
from letschat.database.core.errors import AuthenticationFailed, Conflict, NotFound, ValidationFailed
from letschat.database.config.config import settings
from letschat.crypt.encrypt_decrypt import EncryptionDec
from letschat.api.utils import create_access_token, decode_access_token
from sqlalchemy.orm import Session
from datetime import timedelta
from typing import Iterable, Optional
from uuid import UUID
import logging

logger = logging.getLogger(__name__)

DISPLAY_NAME_MAX_LENGTH = 50
SEARCH_MIN_QUERY_LENGTH = 2
SEARCH_MAX_LIMIT = 50


def user_to_dict(user: User) -> dict:
    """Public representation of a user; never includes the password hash."""
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "status": user.status,
        "last_seen": isoformat(user.last_seen),
        "created_at": isoformat(user.created_at),
    }


def _validate_display_name(display_name: Optional[str]) -> Optional[str]:
    if display_name is None:
        return None
    display_name = display_name.strip()
    if len(display_name) > DISPLAY_NAME_MAX_LENGTH:
        raise ValidationFailed(f"Display name must be at most {DISPLAY_NAME_MAX_LENGTH} characters")
    return display_name or None


def _issue_session(session: Session, user: User, device_info: Optional[str], ip_address: Optional[str]) -> str:
    enc = EncryptionDec()
    token = create_access_token({"sub": str(user.id), "username": user.username})
    UserSessionDao().createSession(
        session,
        UserSession(
            user_id=user.id,
            token_hash=enc.hash_token(token),
            expires_at=utc_now() + timedelta(days=settings.SESSION_EXPIRE_DAYS),
            device_info=device_info,
            ip_address=ip_address,
        ),
    )
    return token


@transactional
def register(
    session: Session,
    username: str,
    password: str,
    display_name: Optional[str] = None,
    device_info: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> dict:
    """
    Create an account and log it in.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session (injected by @transactional).
    username : str
        3-20 letters, digits or underscores; stored lower-case.
    password : str
        8-128 characters with lower, upper, digit and special character.
    display_name : str | None
        Optional, at most 50 characters.
    device_info, ip_address : str | None
        Recorded on the session row.

    Returns
    -------
    dict
        {'user': <public user>, 'token': <jwt>}

    Raises
    ------
    ValidationFailed
        On an invalid username, password or display name.
    Conflict
        If the username is taken (case-insensitively).
    """
    user_dao = UserDao()
    enc = EncryptionDec()
    username = (username or "").strip()
    if not enc.is_valid_username(username):
        raise ValidationFailed("Username must be 3-20 characters and contain only letters, numbers, and underscores")
    if not enc.is_valid_password(password or ""):
        raise ValidationFailed(
            "Password must be 8-128 characters and contain at least 1 lowercase, 1 uppercase, 1 digit, and 1 special character"
        )
    display_name = _validate_display_name(display_name)
    if user_dao.fetchUser(session, username) is not None:
        raise Conflict("Username already exists")

    user = user_dao.createUser(
        session,
        User(username=username, password_hash=enc.hash_password(password), display_name=display_name or username),
    )
    user_dao.updateStatus(session, user.id, "online")
    token = _issue_session(session, user, device_info, ip_address)
    logger.info("Registered user %s", user.id)
    return {"user": user_to_dict(user), "token": token}


@transactional
def login(
    session: Session,
    username: str,
    password: str,
    device_info: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> dict:
    """
    Authenticate a user by username and password.

    Returns
    -------
    dict
        {'user': <public user>, 'token': <jwt>}

    Raises
    ------
    AuthenticationFailed
        "Invalid credentials" for an unknown user or a wrong password alike.
    """
    user_dao = UserDao()
    enc = EncryptionDec()
    user = user_dao.fetchUser(session, username or "")
    if user is None or not enc.check_passwords(password or "", user.password_hash):
        logger.info("Failed login attempt for %r", (username or "")[:20])
        raise AuthenticationFailed("Invalid credentials")

    user_dao.updateStatus(session, user.id, "online")
    token = _issue_session(session, user, device_info, ip_address)
    return {"user": user_to_dict(user), "token": token}


@transactional
def logout(session: Session, token: str, connected_user_ids: Iterable[UUID] = ()) -> Optional[UUID]:
    """
    Revoke the session of a token.

    The user is marked offline only when no other live session remains and
    they are not among `connected_user_ids` (users with an open socket).
    Unknown or already revoked tokens are ignored.

    Returns
    -------
    UUID | None
        The owner of the revoked session.
    """
    if not token:
        return None
    session_dao = UserSessionDao()
    user_id = session_dao.deleteSession(session, EncryptionDec().hash_token(token))
    if user_id is None:
        return None
    if user_id not in set(connected_user_ids) and not session_dao.countActiveSessions(session, user_id):
        UserDao().updateStatus(session, user_id, "offline")
    return user_id


@transactional
def logout_all_devices(session: Session, user_id: UUID, connected: bool = False) -> int:
    """
    Revoke every session of a user; returns how many were removed.

    `connected` tells whether the user still has an open socket, in which case
    their status is left as is.
    """
    removed = UserSessionDao().deleteUserSessions(session, user_id)
    if not connected:
        UserDao().updateStatus(session, user_id, "offline")
    logger.info("Revoked %d session(s) of user %s", removed, user_id)
    return removed


@transactional
def verify_token(session: Session, token: str) -> Optional[dict]:
    """
    Resolve a token to its user.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session (injected by @transactional).
    token : str
        Encoded JWT.

    Returns
    -------
    dict | None
        Public user dict when the JWT is valid and its session is live,
        otherwise None.
    """
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        return None
    user_session = UserSessionDao().fetchActiveSession(session, EncryptionDec().hash_token(token))
    if user_session is None or str(user_session.user_id) != payload["sub"]:
        return None
    user = UserDao().fetchUserById(session, user_session.user_id)
    return user_to_dict(user) if user else None


@transactional
def get_profile(session: Session, user_id: UUID) -> dict:
    user = UserDao().fetchUserById(session, user_id)
    if user is None:
        raise NotFound("User not found")
    return user_to_dict(user)


@transactional
def update_profile(session: Session, user_id: UUID, display_name: Optional[str] = None, status: Optional[str] = None) -> dict:
    """
    Update the display name and/or presence status of a user.

    Arguments left as None are not changed.

    Raises
    ------
    ValidationFailed
        On a display name longer than 50 characters or an unknown status.
    NotFound
        If the user does not exist.
    """
    fields = {}
    if display_name is not None:
        fields["display_name"] = _validate_display_name(display_name)
    if status is not None:
        if status not in USER_STATUSES:
            raise ValidationFailed(f"Status must be one of: {', '.join(USER_STATUSES)}")
        fields["status"] = status
    user_dao = UserDao()
    if user_dao.fetchUserById(session, user_id) is None:
        raise NotFound("User not found")
    user = user_dao.updateProfile(session, user_id, **fields)
    return user_to_dict(user)


@transactional
def set_user_status(session: Session, user_id: UUID, status: str) -> None:
    """Presence update used by the realtime layer on connect/disconnect."""
    UserDao().updateStatus(session, user_id, status)


@transactional
def search_users(session: Session, query: str, user_id: Optional[UUID] = None, limit: int = 20) -> list:
    """
    Search users by username or display name.

    Queries shorter than two characters return an empty list. The requester
    (`user_id`) is never part of the result.
    """
    query = (query or "").strip()
    if len(query) < SEARCH_MIN_QUERY_LENGTH:
        return []
    limit = max(1, min(int(limit), SEARCH_MAX_LIMIT))
    users = UserDao().searchUsers(session, query, limit, exclude_user_id=user_id)
    return [user_to_dict(user) for user in users]


@transactional
def cleanup_expired_sessions(session: Session) -> int:
    removed = UserSessionDao().deleteExpiredSessions(session)
    if removed:
        logger.info("Removed %d expired session(s)", removed)
    return removed
