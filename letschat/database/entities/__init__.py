"""
Entities Package — SQLAlchemy 2.0 ORM Models (UUID + UTC)
=========================================================

The `entities` package defines the ORM models of the application, mapping
database tables to Python classes using SQLAlchemy 2.0-typed mappings.
These classes are consumed by the DAOs (`daos` package).

Tech Stack & Conventions
------------------------
- Generic ``sqlalchemy.Uuid`` columns (native UUID on PostgreSQL, CHAR(32) on SQLite)
- Timezone-aware timestamps (UTC)
- SQLAlchemy 2.0 style `Mapped[...]` + `mapped_column(...)`

Contents
--------
- User (``app_user``)
    Registered account: lower-cased username, bcrypt hash, presence status.
    Holds no key material.

- UserSession (``user_session``)
    Issued login token, stored as a SHA-256 hash with device/IP and expiry.

- Conversation (``conversation``)
    Direct or group chat carrying the wrapped per-conversation encryption key
    and its version.

- ConversationParticipant (``conversation_participant``)
    Membership with role and read marker; unique per (conversation, user).

- ArchivedConversationKey (``conversation_key_archive``)
    Keys retired by rotation, kept to decrypt older messages.

- Message (``message``)
    Encrypted message body (ciphertext + IV + tag), no plaintext column.
"""

from letschat.database.entities.user import User
from letschat.database.entities.user_session import UserSession
from letschat.database.entities.conversations import Conversation, ConversationParticipant, ArchivedConversationKey
from letschat.database.entities.messages import Message

__all__ = [
    "User",
    "UserSession",
    "Conversation",
    "ConversationParticipant",
    "ArchivedConversationKey",
    "Message",
]
