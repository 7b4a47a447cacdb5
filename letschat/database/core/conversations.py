"""
Service-layer operations for conversations and their participants.

Every conversation receives its encryption key at creation time, so the
invariant "a key exists before any message is stored" holds from the first
row on. Group conversations are administered by their admins; direct
conversations always have exactly two members and at most one exists per
pair of users.

All database functions are wrapped with `@transactional` and take keyword
arguments only.
"""

from letschat.database.helpers.transactionManagement import transactional
from letschat.database.helpers.clock import isoformat
from letschat.database.daos.conversation_dao import ConversationDao
from letschat.database.daos.participant_dao import ParticipantDao
from letschat.database.daos.message_dao import MessageDao
from letschat.database.daos.user_dao import UserDao
from letschat.database.entities.conversations import Conversation, CONVERSATION_TYPES
from letschat.database.core.errors import NotFound, PermissionDenied, ValidationFailed
from letschat.database.core.conversation_encryption import generate_encryption_key, rotate_key
from letschat.database.core.messages import decrypt_message, message_to_dict
from sqlalchemy.orm import Session
from typing import Iterable, List, Optional
from uuid import UUID
import logging

logger = logging.getLogger(__name__)

GROUP_NAME_MAX_LENGTH = 100


def _participants_to_list(rows) -> List[dict]:
    return [
        {
            "user_id": user.id,
            "username": user.username,
            "display_name": user.display_name,
            "status": user.status,
            "role": participant.role,
            "joined_at": isoformat(participant.joined_at),
            "last_read_at": isoformat(participant.last_read_at),
        }
        for participant, user in rows
    ]


def conversation_to_dict(session: Session, conversation: Conversation, user_id: UUID) -> dict:
    """
    Representation of a conversation as seen by one participant.

    Includes the member list, the participant's unread count and a decrypted
    preview of the latest message. The encryption key is never exposed.
    """
    participant_dao = ParticipantDao()
    message_dao = MessageDao()
    rows = participant_dao.fetchParticipants(session, conversation.id)
    me = next((participant for participant, _ in rows if participant.user_id == user_id), None)
    latest = message_dao.fetchLatestMessage(session, conversation.id)
    return {
        "id": conversation.id,
        "type": conversation.conversation_type,
        "name": conversation.name,
        "description": conversation.description,
        "created_by": conversation.created_by,
        "key_version": conversation.key_version,
        "created_at": isoformat(conversation.created_at),
        "updated_at": isoformat(conversation.updated_at),
        "participants": _participants_to_list(rows),
        "unread_count": message_dao.countUnread(
            session, conversation.id, user_id, me.last_read_at if me else None
        ),
        "last_message": (
            message_to_dict(latest, decrypt_message(session, conversation, latest)) if latest else None
        ),
    }


def _normalize_ids(user_ids: Iterable[UUID], exclude: Optional[UUID] = None) -> List[UUID]:
    result = []
    for user_id in user_ids or []:
        if user_id == exclude or user_id in result:
            continue
        result.append(user_id)
    return result


def _require_users(session: Session, user_ids: List[UUID]) -> None:
    found = {user.id for user in UserDao().fetchUsersByIds(session, user_ids)}
    missing = [str(user_id) for user_id in user_ids if user_id not in found]
    if missing:
        raise ValidationFailed(f"Unknown participant(s): {', '.join(missing)}")


def _membership(session: Session, conversation_id: UUID, user_id: UUID):
    conversation = ConversationDao().fetchConversationById(session, conversation_id)
    participant = ParticipantDao().fetchParticipant(session, conversation_id, user_id)
    if conversation is None or participant is None:
        raise NotFound("Conversation not found")
    return conversation, participant


@transactional
def create_conversation(
    session: Session,
    created_by: UUID,
    conversation_type: str,
    participant_ids: List[UUID],
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> dict:
    """
    Create a direct or group conversation with a fresh encryption key.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session (injected by @transactional).
    created_by : UUID
        Creating user; always becomes a participant.
    conversation_type : str
        ``"direct"`` or ``"group"``.
    participant_ids : list[UUID]
        Other members. Direct conversations take exactly one.
    name : str | None
        Required for groups, at most 100 characters; ignored for direct.
    description : str | None
        Optional group description.

    Returns
    -------
    dict
        The conversation as seen by the creator. For a direct conversation
        that already exists between the two users, that one is returned.

    Raises
    ------
    ValidationFailed
        On an unknown type, a missing group name, a wrong participant count
        or unknown participant ids.
    """
    if conversation_type not in CONVERSATION_TYPES:
        raise ValidationFailed(f"Conversation type must be one of: {', '.join(CONVERSATION_TYPES)}")
    others = _normalize_ids(participant_ids, exclude=created_by)
    if not others:
        raise ValidationFailed("At least one participant is required")

    conversation_dao = ConversationDao()
    if conversation_type == "direct":
        if len(others) != 1:
            raise ValidationFailed("Direct conversations must have exactly one other participant")
        _require_users(session, others)
        existing = conversation_dao.fetchDirectConversation(session, created_by, others[0])
        if existing is not None:
            return conversation_to_dict(session, existing, created_by)
        name, description = None, None
        participants = [(created_by, "member"), (others[0], "member")]
    else:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Group conversations require a name")
        if len(name) > GROUP_NAME_MAX_LENGTH:
            raise ValidationFailed(f"Group name must be at most {GROUP_NAME_MAX_LENGTH} characters")
        _require_users(session, others)
        participants = [(created_by, "admin")] + [(user_id, "member") for user_id in others]

    conversation = conversation_dao.createConversation(
        session,
        Conversation(
            conversation_type=conversation_type,
            created_by=created_by,
            encryption_key=generate_encryption_key(),
            name=name,
            description=description,
        ),
        participants=participants,
    )
    logger.info("Created %s conversation %s with %d participant(s)", conversation_type, conversation.id, len(participants))
    return conversation_to_dict(session, conversation, created_by)


@transactional
def get_conversations(session: Session, user_id: UUID) -> list:
    """All conversations of a user, most recently active first."""
    conversations = ConversationDao().fetchConversationsByUserId(session, user_id)
    return [conversation_to_dict(session, conversation, user_id) for conversation in conversations]


@transactional
def get_conversation(session: Session, conversation_id: UUID, user_id: UUID) -> dict:
    conversation, _ = _membership(session, conversation_id, user_id)
    return conversation_to_dict(session, conversation, user_id)


@transactional
def update_conversation(
    session: Session,
    conversation_id: UUID,
    user_id: UUID,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> dict:
    """
    Rename a group or change its description (admins only).

    Raises
    ------
    NotFound
        If the user is not a participant.
    ValidationFailed
        For direct conversations or an invalid name.
    PermissionDenied
        If the user is not an admin.
    """
    conversation, participant = _membership(session, conversation_id, user_id)
    if conversation.conversation_type != "group":
        raise ValidationFailed("Only group conversations can be updated")
    if participant.role != "admin":
        raise PermissionDenied("Only admins can update the conversation")
    fields = {}
    if name is not None:
        name = name.strip()
        if not name or len(name) > GROUP_NAME_MAX_LENGTH:
            raise ValidationFailed(f"Group name must be 1-{GROUP_NAME_MAX_LENGTH} characters")
        fields["name"] = name
    if description is not None:
        fields["description"] = description.strip() or None
    ConversationDao().updateConversationDetails(session, conversation.id, **fields)
    return conversation_to_dict(session, conversation, user_id)


@transactional
def get_participants(session: Session, conversation_id: UUID, user_id: UUID) -> list:
    _membership(session, conversation_id, user_id)
    return _participants_to_list(ParticipantDao().fetchParticipants(session, conversation_id))


@transactional
def get_participant_ids(session: Session, conversation_id: UUID) -> List[UUID]:
    """Member ids without any permission check; used for realtime fan-out."""
    return ParticipantDao().fetchParticipantIds(session, conversation_id)


@transactional
def is_participant(session: Session, conversation_id: UUID, user_id: UUID) -> bool:
    return ParticipantDao().fetchParticipant(session, conversation_id, user_id) is not None


@transactional
def add_participants(session: Session, conversation_id: UUID, user_ids: List[UUID], requester_id: UUID) -> list:
    """
    Add members to a group conversation.

    Only admins may add; users already present are skipped.

    Returns
    -------
    list[dict]
        The full participant list after the change.
    """
    conversation, requester = _membership(session, conversation_id, requester_id)
    if conversation.conversation_type != "group":
        raise ValidationFailed("Participants cannot be added to a direct conversation")
    if requester.role != "admin":
        raise PermissionDenied("Only admins can add participants")
    new_ids = _normalize_ids(user_ids)
    if not new_ids:
        raise ValidationFailed("At least one participant is required")
    _require_users(session, new_ids)
    participant_dao = ParticipantDao()
    added = participant_dao.addParticipants(session, conversation.id, new_ids)
    if added:
        logger.info("Added %d participant(s) to conversation %s", len(added), conversation.id)
    return _participants_to_list(participant_dao.fetchParticipants(session, conversation.id))


@transactional
def remove_participant(session: Session, conversation_id: UUID, user_id: UUID, requester_id: UUID) -> dict:
    """
    Remove a member from a group conversation.

    Users may always remove themselves; removing someone else requires the
    admin role. When the last admin leaves, the earliest-joined remaining
    member is promoted. The conversation key is rotated afterwards so later
    messages are sealed under a key the removed user never held.

    Returns
    -------
    dict
        {'conversation_id', 'user_id', 'key_version'}
    """
    conversation, requester = _membership(session, conversation_id, requester_id)
    if conversation.conversation_type != "group":
        raise ValidationFailed("Participants cannot be removed from a direct conversation")
    participant_dao = ParticipantDao()
    if participant_dao.fetchParticipant(session, conversation.id, user_id) is None:
        raise NotFound("Participant not found")
    if user_id != requester_id and requester.role != "admin":
        raise PermissionDenied("Only admins can remove other participants")

    participant_dao.removeParticipant(session, conversation.id, user_id)
    remaining = participant_dao.fetchParticipants(session, conversation.id)
    if remaining and not any(participant.role == "admin" for participant, _ in remaining):
        successor = remaining[0][0]
        participant_dao.updateRole(session, conversation.id, successor.user_id, "admin")
        logger.info("Promoted %s to admin of conversation %s", successor.user_id, conversation.id)
    if remaining:
        rotate_key(session, conversation)
    return {"conversation_id": conversation.id, "user_id": user_id, "key_version": conversation.key_version}


@transactional
def mark_as_read(session: Session, conversation_id: UUID, user_id: UUID) -> dict:
    _membership(session, conversation_id, user_id)
    participant_dao = ParticipantDao()
    participant_dao.updateLastRead(session, conversation_id, user_id)
    participant = participant_dao.fetchParticipant(session, conversation_id, user_id)
    return {
        "conversation_id": conversation_id,
        "user_id": user_id,
        "last_read_at": isoformat(participant.last_read_at),
    }
