"""Service-level tests for registration, login, sessions and profiles."""

from datetime import timedelta
from uuid import UUID, uuid4

import pytest

from letschat.crypt.encrypt_decrypt import EncryptionDec
from letschat.database.core import auth as auth_service
from letschat.database.core.errors import AuthenticationFailed, Conflict, NotFound, ValidationFailed
from letschat.database.entities.user import User
from letschat.database.entities.user_session import UserSession
from letschat.database.helpers.clock import utc_now
from letschat.database.helpers.transactionManagement import SessionFactory

from conftest import PASSWORD, register_user


class TestRegister:
    def test_returns_public_user_and_token(self):
        """Registration logs the user in and never exposes the password hash."""
        result = register_user("Alice_01", "Alice")

        user = result["user"]
        assert isinstance(user["id"], UUID)
        assert user["username"] == "alice_01"
        assert user["display_name"] == "Alice"
        assert user["status"] == "online"
        assert "password_hash" not in user
        assert auth_service.verify_token(token=result["token"])["id"] == user["id"]

    def test_display_name_defaults_to_username(self):
        result = register_user("dave")

        assert result["user"]["display_name"] == "dave"

    def test_duplicate_username_is_case_insensitive(self, alice):
        with pytest.raises(Conflict):
            auth_service.register(username="ALICE", password=PASSWORD)

    @pytest.mark.parametrize("username", ["ab", "with space", "x" * 21, ""])
    def test_invalid_username(self, username):
        with pytest.raises(ValidationFailed) as exc:
            auth_service.register(username=username, password=PASSWORD)
        assert "Username" in exc.value.detail

    @pytest.mark.parametrize("password", ["Sh0rt!", "nouppercase1!", "NoSpecial123", ""])
    def test_weak_password(self, password):
        with pytest.raises(ValidationFailed) as exc:
            auth_service.register(username="erin", password=password)
        assert "Password" in exc.value.detail

    def test_display_name_too_long(self):
        with pytest.raises(ValidationFailed):
            auth_service.register(username="erin", password=PASSWORD, display_name="x" * 51)

    def test_password_is_stored_hashed(self, alice):
        with SessionFactory() as session:
            user = session.get(User, alice["user"]["id"])

        assert user.password_hash != PASSWORD
        assert EncryptionDec().check_passwords(PASSWORD, user.password_hash)

    def test_session_stores_token_hash_only(self, alice):
        with SessionFactory() as session:
            rows = session.query(UserSession).filter(UserSession.user_id == alice["user"]["id"]).all()

        assert len(rows) == 1
        assert rows[0].token_hash == EncryptionDec().hash_token(alice["token"])
        assert rows[0].token_hash != alice["token"]


class TestLogin:
    def test_login_issues_a_new_token(self, alice):
        result = auth_service.login(username="Alice", password=PASSWORD, device_info="pytest")

        assert result["user"]["id"] == alice["user"]["id"]
        assert result["token"] != alice["token"]
        assert auth_service.verify_token(token=result["token"]) is not None
        assert auth_service.verify_token(token=alice["token"]) is not None

    def test_wrong_password(self, alice):
        with pytest.raises(AuthenticationFailed) as exc:
            auth_service.login(username="alice", password="Wr0ng!pass")
        assert exc.value.detail == "Invalid credentials"

    def test_unknown_user(self):
        with pytest.raises(AuthenticationFailed) as exc:
            auth_service.login(username="nobody", password=PASSWORD)
        assert exc.value.detail == "Invalid credentials"


class TestSessions:
    def test_logout_revokes_token_and_sets_offline(self, alice):
        auth_service.logout(token=alice["token"])

        assert auth_service.verify_token(token=alice["token"]) is None
        assert auth_service.get_profile(user_id=alice["user"]["id"])["status"] == "offline"

    def test_logout_keeps_user_online_while_another_session_lives(self, alice):
        second = auth_service.login(username="alice", password=PASSWORD)

        assert auth_service.logout(token=alice["token"]) == alice["user"]["id"]

        assert auth_service.verify_token(token=second["token"])["id"] == alice["user"]["id"]
        assert auth_service.get_profile(user_id=alice["user"]["id"])["status"] == "online"

    def test_logout_keeps_connected_user_online(self, alice):
        auth_service.logout(token=alice["token"], connected_user_ids=[alice["user"]["id"]])

        assert auth_service.verify_token(token=alice["token"]) is None
        assert auth_service.get_profile(user_id=alice["user"]["id"])["status"] == "online"

    def test_logout_all_devices_keeps_connected_user_online(self, alice):
        auth_service.logout_all_devices(user_id=alice["user"]["id"], connected=True)

        assert auth_service.get_profile(user_id=alice["user"]["id"])["status"] == "online"

    def test_logout_with_unknown_token_is_a_no_op(self):
        auth_service.logout(token="not-a-token")
        auth_service.logout(token="")

    def test_logout_all_devices(self, alice):
        second = auth_service.login(username="alice", password=PASSWORD)

        removed = auth_service.logout_all_devices(user_id=alice["user"]["id"])

        assert removed == 2
        assert auth_service.verify_token(token=alice["token"]) is None
        assert auth_service.verify_token(token=second["token"]) is None
        assert auth_service.get_profile(user_id=alice["user"]["id"])["status"] == "offline"

    def test_garbage_token_is_rejected(self):
        assert auth_service.verify_token(token="garbage") is None
        assert auth_service.verify_token(token="") is None

    def test_expired_session_is_rejected_and_cleaned_up(self, alice):
        with SessionFactory() as session:
            row = session.query(UserSession).filter(UserSession.user_id == alice["user"]["id"]).one()
            row.expires_at = utc_now() - timedelta(minutes=1)
            session.commit()

        assert auth_service.verify_token(token=alice["token"]) is None
        assert auth_service.cleanup_expired_sessions() == 1


class TestProfile:
    def test_get_profile_unknown_user(self):
        with pytest.raises(NotFound):
            auth_service.get_profile(user_id=uuid4())

    def test_update_display_name_and_status(self, alice):
        updated = auth_service.update_profile(user_id=alice["user"]["id"], display_name="  Alice L.  ", status="busy")

        assert updated["display_name"] == "Alice L."
        assert updated["status"] == "busy"
        assert auth_service.get_profile(user_id=alice["user"]["id"])["status"] == "busy"

    def test_update_rejects_unknown_status(self, alice):
        with pytest.raises(ValidationFailed):
            auth_service.update_profile(user_id=alice["user"]["id"], status="sleeping")


class TestSearch:
    def test_matches_username_and_display_name(self, alice, bob, carol):
        by_username = auth_service.search_users(query="bo", user_id=alice["user"]["id"])
        by_display_name = auth_service.search_users(query="CAR", user_id=alice["user"]["id"])

        assert [user["username"] for user in by_username] == ["bob"]
        assert [user["username"] for user in by_display_name] == ["carol"]

    def test_excludes_requester(self, alice):
        assert auth_service.search_users(query="alice", user_id=alice["user"]["id"]) == []

    def test_short_query_returns_nothing(self, alice, bob):
        assert auth_service.search_users(query="b") == []

    def test_like_wildcards_are_literal(self, alice, bob):
        assert auth_service.search_users(query="%%") == []

    def test_limit_is_clamped(self, alice):
        register_user("alan")
        register_user("alex")

        assert len(auth_service.search_users(query="al", limit=2)) == 2
        assert len(auth_service.search_users(query="al", limit=0)) == 1
        assert len(auth_service.search_users(query="al", limit=500)) == 3
