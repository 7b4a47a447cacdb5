"""
UserSession ORM Model
=====================

One row per issued login token. The token itself is never stored: ``token_hash``
holds the SHA-256 hex digest of the JWT, so a leaked table cannot be replayed.
A token is accepted only while its session row exists and ``expires_at`` lies in
the future; logging out deletes the row.
"""

from letschat.database.config.connection_engine import declarativeBase
from letschat.database.helpers.clock import utc_now
from sqlalchemy import ForeignKey, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from uuid import UUID, uuid4
from datetime import datetime
from typing import Optional


class UserSession(declarativeBase):
    """
    ORM model for the `user_session` table.

    Attributes
    ----------
    id : UUID
        Primary key.
    user_id : UUID
        Owner (FK → app_user.id).
    token_hash : str
        SHA-256 hex digest of the issued JWT.
    device_info : str | None
        Client user agent, if known.
    ip_address : str | None
        Client address, if known.
    expires_at : datetime
        End of validity (UTC).
    created_at : datetime
        Issue time (UTC).
    """

    __tablename__ = "user_session"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True
    )

    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    device_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __init__(
        self,
        user_id: UUID,
        token_hash: str,
        expires_at: datetime,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ):
        self.id = uuid4()
        self.user_id = user_id
        self.token_hash = token_hash
        self.expires_at = expires_at
        self.device_info = device_info[:255] if device_info else None
        self.ip_address = ip_address
        self.created_at = utc_now()
