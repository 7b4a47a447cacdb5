"""
Service-layer operations for encrypted messages.

Messages are encrypted with the key of their conversation before they are
stored and decrypted on the way out for participants; nothing in this module
persists plaintext. All database functions are wrapped with `@transactional`
and take keyword arguments only.

Read path failures are contained per message: a row that fails
authentication is returned with the content ``"[Decryption failed]"`` so one
damaged row never hides the rest of a conversation.
"""

from letschat.database.helpers.transactionManagement import transactional
from letschat.database.helpers.clock import as_utc, isoformat
from letschat.database.daos.conversation_dao import ConversationDao
from letschat.database.daos.participant_dao import ParticipantDao
from letschat.database.daos.message_dao import MessageDao
from letschat.database.entities.conversations import Conversation
from letschat.database.entities.messages import Message, CONTENT_TYPES
from letschat.database.core.errors import EncryptionKeyMissing, NotFound, PermissionDenied, ValidationFailed
from letschat.database.core.conversation_encryption import (
    decrypt_message_content,
    encrypt_message_content,
    load_conversation_key,
)
from letschat.database.config.config import settings
from letschat.crypt.conversation_encryption import DecryptionError
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Dict, Optional
from uuid import UUID
import logging

logger = logging.getLogger(__name__)

DECRYPTION_FAILED = "[Decryption failed]"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def message_to_dict(message: Message, content: str) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "content": content,
        "content_type": message.content_type,
        "reply_to_id": message.reply_to_id,
        "edited_at": isoformat(message.edited_at),
        "created_at": isoformat(message.created_at),
    }


def decrypt_message(session: Session, conversation: Conversation, message: Message, keys: Optional[Dict[int, Optional[bytes]]] = None) -> str:
    """
    Decrypt one message row, never raising.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    conversation : Conversation
        Owner of the message.
    message : Message
        Row to decrypt.
    keys : dict | None
        Cache of key_version -> raw key shared across a page of messages.

    Returns
    -------
    str
        The plaintext, or ``"[Decryption failed]"``.
    """
    keys = {} if keys is None else keys
    if message.key_version not in keys:
        try:
            keys[message.key_version] = load_conversation_key(session, conversation, message.key_version)
        except EncryptionKeyMissing:
            keys[message.key_version] = None
    key = keys[message.key_version]
    if key is None:
        logger.warning("No key version %s for message %s", message.key_version, message.id)
        return DECRYPTION_FAILED
    try:
        return decrypt_message_content(message.encrypted_content, message.iv, message.tag, key, conversation.id)
    except DecryptionError:
        logger.warning("Message %s of conversation %s failed authentication", message.id, conversation.id)
        return DECRYPTION_FAILED


def _validate_content(content: Optional[str]) -> str:
    if content is not None and not isinstance(content, str):
        raise ValidationFailed("Message content must be a string")
    if content is None or not content.strip():
        raise ValidationFailed("Message content cannot be empty")
    if len(content) > settings.MESSAGE_MAX_LENGTH:
        raise ValidationFailed(f"Message content must be at most {settings.MESSAGE_MAX_LENGTH} characters")
    return content


def _conversation_for_member(session: Session, conversation_id: UUID, user_id: UUID) -> Conversation:
    conversation = ConversationDao().fetchConversationById(session, conversation_id)
    if conversation is None:
        raise NotFound("Conversation not found")
    if ParticipantDao().fetchParticipant(session, conversation_id, user_id) is None:
        raise PermissionDenied("User is not a participant in this conversation")
    return conversation


@transactional
def send_message(
    session: Session,
    conversation_id: UUID,
    sender_id: UUID,
    content: str,
    content_type: str = "text",
    reply_to_id: Optional[UUID] = None,
) -> dict:
    """
    Encrypt and store a message.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session (injected by @transactional).
    conversation_id : UUID
        Target conversation.
    sender_id : UUID
        Author; must participate in the conversation.
    content : str
        Plaintext, non-blank, at most `settings.MESSAGE_MAX_LENGTH` characters.
    content_type : str
        ``"text"`` or ``"system"``.
    reply_to_id : UUID | None
        A non-deleted message of the same conversation.

    Returns
    -------
    dict
        Message event ``{'message': {..., 'content': <plaintext>}, 'attachments': []}``.
        The stored row holds only `encrypted_content`, `iv` and `tag`.

    Raises
    ------
    NotFound
        If the conversation does not exist.
    PermissionDenied
        If the sender is not a participant.
    ValidationFailed
        On empty or oversized content, unknown content type or bad reply target.
    EncryptionKeyMissing
        If the conversation key cannot be loaded.
    """
    message_dao = MessageDao()
    conversation = _conversation_for_member(session, conversation_id, sender_id)
    content = _validate_content(content)
    if content_type not in CONTENT_TYPES:
        raise ValidationFailed(f"Content type must be one of: {', '.join(CONTENT_TYPES)}")
    if reply_to_id is not None:
        parent = message_dao.fetchMessageById(session, reply_to_id)
        if parent is None or parent.conversation_id != conversation.id:
            raise ValidationFailed("Reply target not found in this conversation")

    key = load_conversation_key(session, conversation)
    payload = encrypt_message_content(content, key, conversation.id)
    message = message_dao.createMessage(
        session,
        Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            encrypted_content=payload.encrypted_content,
            iv=payload.iv,
            tag=payload.tag,
            key_version=conversation.key_version,
            content_type=content_type,
            reply_to_id=reply_to_id,
        ),
    )
    ConversationDao().updateConversationByDate(session, conversation.id, message.created_at)
    ParticipantDao().updateLastRead(session, conversation.id, sender_id, message.created_at)
    return {"message": message_to_dict(message, content), "attachments": []}


@transactional
def get_messages(
    session: Session,
    conversation_id: UUID,
    user_id: UUID,
    limit: int = DEFAULT_PAGE_SIZE,
    before: Optional[datetime] = None,
) -> list:
    """
    Read one page of decrypted messages.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session (injected by @transactional).
    conversation_id : UUID
        Conversation to read.
    user_id : UUID
        Requester; must participate.
    limit : int
        Page size, clamped to 1..100.
    before : datetime | None
        Cursor: only messages created strictly earlier are returned.

    Returns
    -------
    list[dict]
        The newest `limit` matching messages in chronological order, each
        with its plaintext `content`.
    """
    conversation = _conversation_for_member(session, conversation_id, user_id)
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    rows = MessageDao().fetchMessagesByConversationId(session, conversation.id, limit=limit, before=as_utc(before))
    keys: Dict[int, Optional[bytes]] = {}
    return [message_to_dict(row, decrypt_message(session, conversation, row, keys)) for row in rows]


@transactional
def edit_message(session: Session, message_id: UUID, user_id: UUID, content: str) -> dict:
    """
    Replace the content of one's own message.

    The new content is encrypted under the conversation's current key and
    `edited_at` is stamped.

    Raises
    ------
    NotFound
        If the message does not exist or was deleted.
    PermissionDenied
        If `user_id` is not the sender or has left the conversation.
    ValidationFailed
        On empty or oversized content.
    """
    message_dao = MessageDao()
    message = message_dao.fetchMessageById(session, message_id)
    if message is None:
        raise NotFound("Message not found")
    if message.sender_id != user_id:
        raise PermissionDenied("You can only edit your own messages")
    conversation = _conversation_for_member(session, message.conversation_id, user_id)
    content = _validate_content(content)

    key = load_conversation_key(session, conversation)
    payload = encrypt_message_content(content, key, conversation.id)
    message_dao.updateMessageContent(
        session, message, payload.encrypted_content, payload.iv, payload.tag, conversation.key_version
    )
    return message_to_dict(message, content)


@transactional
def delete_message(session: Session, message_id: UUID, user_id: UUID) -> dict:
    """
    Soft-delete one's own message.

    Like editing, this requires the sender to still participate in the
    conversation.
    """
    message_dao = MessageDao()
    message = message_dao.fetchMessageById(session, message_id)
    if message is None:
        raise NotFound("Message not found")
    if message.sender_id != user_id:
        raise PermissionDenied("You can only delete your own messages")
    _conversation_for_member(session, message.conversation_id, user_id)
    message_dao.softDeleteMessage(session, message)
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "deleted_at": isoformat(message.deleted_at),
    }
