"""
User ORM Model
==============

The ``User`` ORM model represents a registered account stored in the
``app_user`` table.

Key features
~~~~~~~~~~~~
- UUID primary key (``id``)
- Unique, lower-cased ``username``
- bcrypt ``password_hash``
- Presence ``status`` (``online`` | ``offline`` | ``away`` | ``busy``) and ``last_seen``

Users never carry key material: message encryption keys belong to
conversations (see ``Conversation.encryption_key``).
"""

from letschat.database.config.connection_engine import declarativeBase
from letschat.database.helpers.clock import utc_now
from sqlalchemy import DateTime, String, TEXT, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from uuid import UUID, uuid4
from datetime import datetime
from typing import Optional

USER_STATUSES = ("online", "offline", "away", "busy")
"""Accepted values of ``User.status``."""


class User(declarativeBase):
    """
    ORM model for the `app_user` table.

    Attributes
    ----------
    id : UUID
        Primary key.
    username : str
        Unique login name, stored lower-case.
    password_hash : str
        bcrypt hash of the user's password.
    display_name : str | None
        Optional human-readable name.
    status : str
        Presence status, one of ``USER_STATUSES``.
    last_seen : datetime | None
        Last login / disconnect time (UTC).
    created_at, updated_at : datetime
        Row timestamps (UTC).
    """

    __tablename__ = "app_user"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    """Primary key. UUID of the user."""

    username: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    """Unique, lower-cased username."""

    password_hash: Mapped[str] = mapped_column(TEXT, nullable=False)
    """bcrypt password hash."""

    display_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Optional display name (max 50 characters)."""

    status: Mapped[str] = mapped_column(String(10), nullable=False, default="offline")
    """Presence status."""

    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    """Timestamp of the last presence change (UTC)."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    """Registration time (UTC)."""

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    """Last profile change (UTC)."""

    def __init__(self, username: str, password_hash: str, display_name: Optional[str] = None, user_id: Optional[UUID] = None):
        """
        Initialize a new User object.

        Parameters
        ----------
        username : str
            Login name; stored lower-cased.
        password_hash : str
            Already-hashed password.
        display_name : str | None
            Optional display name.
        user_id : UUID | None
            Primary key; generated when omitted.
        """
        now = utc_now()
        self.id = user_id or uuid4()
        self.username = username.lower()
        self.password_hash = password_hash
        self.display_name = display_name
        self.status = "offline"
        self.last_seen = None
        self.created_at = now
        self.updated_at = now

    def __str__(self) -> str:
        return f"User: id:{self.id}, username: {self.username}, status: {self.status}"
