"""Service-level tests for conversations, membership and key management."""

from uuid import uuid4

import pytest

from letschat.database.core import conversations as conversation_service
from letschat.database.core import conversation_encryption as key_service
from letschat.database.core import messages as message_service
from letschat.database.core.errors import NotFound, PermissionDenied, ValidationFailed
from letschat.database.entities.conversations import ArchivedConversationKey, Conversation, ConversationParticipant
from letschat.database.entities.user import User
from letschat.database.helpers.transactionManagement import SessionFactory


def uid(user):
    return user["user"]["id"]


def direct(a, b):
    return conversation_service.create_conversation(
        created_by=uid(a), conversation_type="direct", participant_ids=[uid(b)]
    )


def group(admin, *members, name="Team"):
    return conversation_service.create_conversation(
        created_by=uid(admin), conversation_type="group", participant_ids=[uid(m) for m in members], name=name
    )


def stored_conversation(conversation_id):
    with SessionFactory() as session:
        return session.get(Conversation, conversation_id)


class TestCreateConversation:
    def test_direct_conversation(self, alice, bob):
        conversation = direct(alice, bob)

        assert conversation["type"] == "direct"
        assert conversation["name"] is None
        assert conversation["key_version"] == 1
        assert {p["user_id"] for p in conversation["participants"]} == {uid(alice), uid(bob)}
        assert {p["role"] for p in conversation["participants"]} == {"member"}
        assert "encryption_key" not in conversation

    def test_direct_conversation_is_reused(self, alice, bob):
        first = direct(alice, bob)
        second = direct(bob, alice)

        assert first["id"] == second["id"]

    def test_key_is_generated_and_wrapped(self, alice, bob):
        conversation = direct(alice, bob)

        row = stored_conversation(conversation["id"])
        assert row.encryption_key.startswith("v1:")
        assert key_service.has_conversation_key(conversation_id=conversation["id"])

    def test_group_creator_is_admin(self, alice, bob, carol):
        conversation = group(alice, bob, carol, name="  Team  ")

        roles = {p["user_id"]: p["role"] for p in conversation["participants"]}
        assert conversation["name"] == "Team"
        assert roles == {uid(alice): "admin", uid(bob): "member", uid(carol): "member"}

    def test_group_requires_name(self, alice, bob):
        with pytest.raises(ValidationFailed) as exc:
            group(alice, bob, name="   ")
        assert exc.value.detail == "Group conversations require a name"

    def test_requires_a_participant(self, alice):
        with pytest.raises(ValidationFailed):
            conversation_service.create_conversation(
                created_by=uid(alice), conversation_type="group", participant_ids=[uid(alice)], name="Solo"
            )

    def test_direct_needs_exactly_one_other(self, alice, bob, carol):
        with pytest.raises(ValidationFailed):
            conversation_service.create_conversation(
                created_by=uid(alice), conversation_type="direct", participant_ids=[uid(bob), uid(carol)]
            )

    def test_unknown_participant(self, alice):
        with pytest.raises(ValidationFailed) as exc:
            conversation_service.create_conversation(
                created_by=uid(alice), conversation_type="direct", participant_ids=[uuid4()]
            )
        assert exc.value.detail.startswith("Unknown participant(s)")

    def test_unknown_type(self, alice, bob):
        with pytest.raises(ValidationFailed):
            conversation_service.create_conversation(
                created_by=uid(alice), conversation_type="channel", participant_ids=[uid(bob)]
            )


class TestReadConversations:
    def test_list_is_ordered_by_activity(self, alice, bob, carol):
        with_bob = direct(alice, bob)
        with_carol = direct(alice, carol)

        assert [c["id"] for c in conversation_service.get_conversations(user_id=uid(alice))] == [with_carol["id"], with_bob["id"]]

        message_service.send_message(conversation_id=with_bob["id"], sender_id=uid(alice), content="hi bob")

        listed = conversation_service.get_conversations(user_id=uid(alice))
        assert [c["id"] for c in listed] == [with_bob["id"], with_carol["id"]]
        assert listed[0]["last_message"]["content"] == "hi bob"

    def test_only_members_see_a_conversation(self, alice, bob, carol):
        conversation = direct(alice, bob)

        assert conversation_service.get_conversations(user_id=uid(carol)) == []
        with pytest.raises(NotFound):
            conversation_service.get_conversation(conversation_id=conversation["id"], user_id=uid(carol))
        with pytest.raises(NotFound):
            conversation_service.get_conversation(conversation_id=uuid4(), user_id=uid(alice))

    def test_unread_count_and_mark_as_read(self, alice, bob):
        conversation = direct(alice, bob)
        for text in ("one", "two"):
            message_service.send_message(conversation_id=conversation["id"], sender_id=uid(alice), content=text)

        assert conversation_service.get_conversation(conversation_id=conversation["id"], user_id=uid(bob))["unread_count"] == 2
        assert conversation_service.get_conversation(conversation_id=conversation["id"], user_id=uid(alice))["unread_count"] == 0

        result = conversation_service.mark_as_read(conversation_id=conversation["id"], user_id=uid(bob))

        assert result["user_id"] == uid(bob)
        assert conversation_service.get_conversation(conversation_id=conversation["id"], user_id=uid(bob))["unread_count"] == 0


class TestUpdateConversation:
    def test_admin_can_rename(self, alice, bob):
        conversation = group(alice, bob)

        updated = conversation_service.update_conversation(
            conversation_id=conversation["id"], user_id=uid(alice), name="Renamed", description="About"
        )

        assert updated["name"] == "Renamed"
        assert updated["description"] == "About"

    def test_member_cannot_rename(self, alice, bob):
        conversation = group(alice, bob)

        with pytest.raises(PermissionDenied):
            conversation_service.update_conversation(conversation_id=conversation["id"], user_id=uid(bob), name="Mine")

    def test_direct_cannot_be_renamed(self, alice, bob):
        conversation = direct(alice, bob)

        with pytest.raises(ValidationFailed):
            conversation_service.update_conversation(conversation_id=conversation["id"], user_id=uid(alice), name="Us")


class TestParticipants:
    def test_admin_adds_members_and_skips_existing(self, alice, bob, carol):
        conversation = group(alice, bob)

        participants = conversation_service.add_participants(
            conversation_id=conversation["id"], user_ids=[uid(bob), uid(carol)], requester_id=uid(alice)
        )

        assert sorted(p["username"] for p in participants) == ["alice", "bob", "carol"]
        assert conversation_service.is_participant(conversation_id=conversation["id"], user_id=uid(carol))

    def test_member_cannot_add(self, alice, bob, carol):
        conversation = group(alice, bob)

        with pytest.raises(PermissionDenied):
            conversation_service.add_participants(
                conversation_id=conversation["id"], user_ids=[uid(carol)], requester_id=uid(bob)
            )

    def test_cannot_add_to_direct(self, alice, bob, carol):
        conversation = direct(alice, bob)

        with pytest.raises(ValidationFailed):
            conversation_service.add_participants(
                conversation_id=conversation["id"], user_ids=[uid(carol)], requester_id=uid(alice)
            )

    def test_admin_removal_rotates_key(self, alice, bob, carol):
        conversation = group(alice, bob, carol)

        result = conversation_service.remove_participant(
            conversation_id=conversation["id"], user_id=uid(carol), requester_id=uid(alice)
        )

        assert result["key_version"] == 2
        assert stored_conversation(conversation["id"]).key_version == 2
        assert not conversation_service.is_participant(conversation_id=conversation["id"], user_id=uid(carol))
        assert key_service.get_conversation_key(conversation_id=conversation["id"], user_id=uid(carol)) is None
        with pytest.raises(PermissionDenied):
            message_service.get_messages(conversation_id=conversation["id"], user_id=uid(carol))

    def test_member_cannot_remove_others_but_can_leave(self, alice, bob, carol):
        conversation = group(alice, bob, carol)

        with pytest.raises(PermissionDenied):
            conversation_service.remove_participant(
                conversation_id=conversation["id"], user_id=uid(carol), requester_id=uid(bob)
            )
        conversation_service.remove_participant(
            conversation_id=conversation["id"], user_id=uid(bob), requester_id=uid(bob)
        )

        ids = conversation_service.get_participant_ids(conversation_id=conversation["id"])
        assert set(ids) == {uid(alice), uid(carol)}

    def test_last_admin_leaving_promotes_earliest_member(self, alice, bob, carol):
        conversation = group(alice, bob, carol)

        conversation_service.remove_participant(
            conversation_id=conversation["id"], user_id=uid(alice), requester_id=uid(alice)
        )

        participants = conversation_service.get_participants(conversation_id=conversation["id"], user_id=uid(bob))
        roles = {p["user_id"]: p["role"] for p in participants}
        assert roles == {uid(bob): "admin", uid(carol): "member"}

    def test_remove_unknown_participant(self, alice, bob, carol):
        conversation = group(alice, bob)

        with pytest.raises(NotFound):
            conversation_service.remove_participant(
                conversation_id=conversation["id"], user_id=uid(carol), requester_id=uid(alice)
            )


class TestConversationKeys:
    def test_participant_gets_raw_key(self, alice, bob, carol):
        conversation = direct(alice, bob)

        key = key_service.get_conversation_key(conversation_id=conversation["id"], user_id=uid(alice))

        assert isinstance(key, bytes) and len(key) == 32
        assert key_service.get_conversation_key(conversation_id=conversation["id"], user_id=uid(bob)) == key
        assert key_service.get_conversation_key(conversation_id=conversation["id"], user_id=uid(carol)) is None

    def test_rotation_in_direct_conversation(self, alice, bob):
        conversation = direct(alice, bob)
        old_key = key_service.get_conversation_key(conversation_id=conversation["id"], user_id=uid(alice))

        result = key_service.rotate_conversation_key(conversation_id=conversation["id"], requester_id=uid(bob))

        assert result["key_version"] == 2
        assert key_service.get_conversation_key(conversation_id=conversation["id"], user_id=uid(alice)) != old_key
        assert key_service.get_conversation_key(conversation_id=conversation["id"], user_id=uid(alice), key_version=1) == old_key
        with SessionFactory() as session:
            assert session.get(ArchivedConversationKey, (conversation["id"], 1)) is not None

    def test_group_rotation_is_admin_only(self, alice, bob):
        conversation = group(alice, bob)

        with pytest.raises(PermissionDenied):
            key_service.rotate_conversation_key(conversation_id=conversation["id"], requester_id=uid(bob))

    def test_rotation_requires_membership(self, alice, bob, carol):
        conversation = direct(alice, bob)

        with pytest.raises(NotFound):
            key_service.rotate_conversation_key(conversation_id=conversation["id"], requester_id=uid(carol))

    def test_migration_backfills_missing_keys(self, alice, bob):
        legacy = Conversation(conversation_type="direct", created_by=uid(alice), encryption_key=None)
        with SessionFactory() as session:
            session.add(legacy)
            session.flush()
            session.add_all([
                ConversationParticipant(conversation_id=legacy.id, user_id=uid(alice)),
                ConversationParticipant(conversation_id=legacy.id, user_id=uid(bob)),
            ])
            session.commit()

        assert not key_service.has_conversation_key(conversation_id=legacy.id)
        assert key_service.migrate_existing_conversations() == 1
        assert key_service.has_conversation_key(conversation_id=legacy.id)
        assert key_service.migrate_existing_conversations() == 0

    def test_keyless_conversation_gets_key_on_first_message(self, alice, bob):
        legacy = Conversation(conversation_type="direct", created_by=uid(alice), encryption_key=None)
        with SessionFactory() as session:
            session.add(legacy)
            session.flush()
            session.add(ConversationParticipant(conversation_id=legacy.id, user_id=uid(alice)))
            session.commit()

        message_service.send_message(conversation_id=legacy.id, sender_id=uid(alice), content="first")

        assert key_service.has_conversation_key(conversation_id=legacy.id)
        assert message_service.get_messages(conversation_id=legacy.id, user_id=uid(alice))[0]["content"] == "first"


def test_users_carry_no_key_material():
    assert not any("key" in column.name for column in User.__table__.columns)
