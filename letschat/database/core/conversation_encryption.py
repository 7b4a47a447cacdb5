"""
Conversation key management.

Service functions that own the lifecycle of per-conversation encryption keys:
generation, lazy creation for legacy rows, participant-gated retrieval,
rotation with archival of the retired key, and the startup backfill.

All database functions are wrapped with `@transactional`; callers pass every
argument by keyword. Raw keys never leave this module except to the message
service that needs them for a single encrypt/decrypt.
"""

from letschat.database.helpers.transactionManagement import transactional
from letschat.database.daos.conversation_dao import ConversationDao
from letschat.database.daos.participant_dao import ParticipantDao
from letschat.database.entities.conversations import Conversation
from letschat.database.core.errors import EncryptionKeyMissing, NotFound, PermissionDenied
from letschat.crypt.conversation_encryption import ConversationEncryption, DecryptionError, EncryptedPayload
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
import logging

logger = logging.getLogger(__name__)

_cipher = ConversationEncryption()


def generate_encryption_key() -> str:
    """
    Create a new conversation key, already wrapped for storage.

    Returns
    -------
    str
        Value for `Conversation.encryption_key`.
    """
    return _cipher.wrap_key(_cipher.generate_key())


def load_conversation_key(session: Session, conversation: Conversation, key_version: Optional[int] = None) -> bytes:
    """
    Return the raw key of a conversation without any membership check.

    A conversation without a key (legacy row) receives one here, so a key
    always exists before a message is encrypted.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    conversation : Conversation
        Conversation entity.
    key_version : int | None
        Version to load; defaults to the current one. Older versions are read
        from the key archive.

    Raises
    ------
    EncryptionKeyMissing
        If the requested version does not exist or cannot be unwrapped.
    """
    if conversation.encryption_key is None:
        logger.info("Conversation %s has no encryption key; generating one", conversation.id)
        ConversationDao().updateEncryptionKey(
            session, conversation.id, generate_encryption_key(), conversation.key_version or 1
        )

    version = key_version or conversation.key_version
    if version == conversation.key_version:
        wrapped = conversation.encryption_key
    else:
        wrapped = ConversationDao().fetchArchivedKey(session, conversation.id, version)
    if wrapped is None:
        raise EncryptionKeyMissing("Conversation encryption key not found")

    try:
        return _cipher.unwrap_key(wrapped)
    except DecryptionError as e:
        logger.error("Key version %s of conversation %s could not be unwrapped", version, conversation.id)
        raise EncryptionKeyMissing("Conversation encryption key not found") from e


@transactional
def get_conversation_key(session: Session, conversation_id: UUID, user_id: UUID, key_version: Optional[int] = None) -> Optional[bytes]:
    """
    Return the raw conversation key for a participant.

    Returns
    -------
    bytes | None
        The key, or None when the conversation does not exist or `user_id`
        does not participate in it.
    """
    conversation = ConversationDao().fetchConversationForParticipant(session, conversation_id, user_id)
    if conversation is None:
        return None
    return load_conversation_key(session, conversation, key_version)


@transactional
def has_conversation_key(session: Session, conversation_id: UUID) -> bool:
    conversation = ConversationDao().fetchConversationById(session, conversation_id)
    return conversation is not None and conversation.encryption_key is not None


def encrypt_message_content(content: str, key: bytes, conversation_id: UUID) -> EncryptedPayload:
    return _cipher.encrypt_message(content, key, conversation_id)


def decrypt_message_content(encrypted_content: str, iv: str, tag: str, key: bytes, conversation_id: UUID) -> str:
    """Decrypt a message body; raises `DecryptionError` on any authentication failure."""
    return _cipher.decrypt_message(encrypted_content, iv, tag, key, conversation_id)


def rotate_key(session: Session, conversation: Conversation) -> int:
    """
    Archive the current key of a conversation and install a fresh one.

    Returns
    -------
    int
        The new key version.
    """
    conversation_dao = ConversationDao()
    old_version = conversation.key_version
    if conversation.encryption_key is not None:
        conversation_dao.archiveKey(session, conversation.id, old_version, conversation.encryption_key)
    new_version = old_version + 1
    conversation_dao.updateEncryptionKey(session, conversation.id, generate_encryption_key(), new_version)
    logger.info("Rotated key of conversation %s to version %s", conversation.id, new_version)
    return new_version


@transactional
def rotate_conversation_key(session: Session, conversation_id: UUID, requester_id: UUID) -> dict:
    """
    Rotate a conversation's key on behalf of a participant.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session (injected by @transactional).
    conversation_id : UUID
        Conversation to rotate.
    requester_id : UUID
        Acting user. Group conversations require an admin; in direct
        conversations either participant may rotate.

    Returns
    -------
    dict
        {'conversation_id': UUID, 'key_version': int}

    Raises
    ------
    NotFound
        If the conversation does not exist or the requester is not a participant.
    PermissionDenied
        If a non-admin tries to rotate a group key.
    """
    participant = ParticipantDao().fetchParticipant(session, conversation_id, requester_id)
    conversation = ConversationDao().fetchConversationById(session, conversation_id)
    if participant is None or conversation is None:
        raise NotFound("Conversation not found")
    if conversation.conversation_type == "group" and participant.role != "admin":
        raise PermissionDenied("Only admins can rotate the encryption key of a group")
    version = rotate_key(session, conversation)
    return {"conversation_id": conversation.id, "key_version": version}


@transactional
def migrate_existing_conversations(session: Session) -> int:
    """
    Give every conversation without an encryption key a fresh one.

    Returns
    -------
    int
        Number of conversations updated.
    """
    conversation_dao = ConversationDao()
    pending = conversation_dao.fetchConversationsWithoutKey(session)
    for conversation in pending:
        conversation_dao.updateEncryptionKey(
            session, conversation.id, generate_encryption_key(), conversation.key_version or 1
        )
    if pending:
        logger.info("Generated encryption keys for %d legacy conversation(s)", len(pending))
    return len(pending)
