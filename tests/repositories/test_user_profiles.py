"""Tests for profile projection and id handling of the MongoDB repositories."""

from bson import ObjectId

from chatsync.repositories.conversation_repository import to_object_id
from chatsync.repositories.user_repository import profile_from_user


class TestProfileFromUser:

    def test_prefers_name_over_username(self):
        profile = profile_from_user("u1", {"name": "Ana", "username": "ana99", "role": "mentor"})
        assert (profile.name, profile.role) == ("Ana", "mentor")

    def test_falls_back_through_username_and_full_name(self):
        assert profile_from_user("u1", {"username": "ana99"}).name == "ana99"
        assert profile_from_user("u1", {"full_name": "Ana Lima"}).name == "Ana Lima"
        assert profile_from_user("u1", {}).name == "Unknown User"

    def test_defaults(self):
        profile = profile_from_user("u1", {"photoURL": "https://img/ana.png"})
        assert profile.id == "u1"
        assert profile.role == "learner"
        assert profile.photo_url == "https://img/ana.png"
        assert profile.location == ""


class TestToObjectId:

    def test_valid_hex_becomes_object_id(self):
        oid = ObjectId()
        assert to_object_id(str(oid)) == oid

    def test_other_ids_pass_through(self):
        assert to_object_id("firebase-uid-123") == "firebase-uid-123"
        assert to_object_id(42) == 42
