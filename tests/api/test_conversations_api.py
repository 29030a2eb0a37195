"""Tests for the REST endpoints."""

from api_helpers import headers
from conftest import at


class TestListConversations:

    def test_requires_user(self, client):
        assert client.get("/conversations").status_code == 401

    def test_returns_one_entry_per_pair_and_purges(self, client, db):
        db.users["bob"] = {"name": "Bob", "role": "mentor", "location": "Lyon"}
        db.insert_conversation(["alice", "bob"], conversation_id="x", created_at=at(10))
        db.insert_conversation(["alice", "bob"], conversation_id="y", created_at=at(12))
        db.insert_conversation(["carol", "alice"], conversation_id="z", created_at=at(1), participant_names={"carol": "Carol"})

        response = client.get("/conversations", headers=headers())

        assert response.status_code == 200
        items = response.json()["items"]
        assert [item["id"] for item in items] == ["y", "z"]
        assert items[0]["other_participant"] == {
            "id": "bob", "name": "Bob", "role": "mentor", "photo_url": "", "location": "Lyon",
        }
        assert items[1]["other_participant"]["name"] == "Carol"
        assert set(db.conversations) == {"y", "z"}

    def test_empty(self, client):
        response = client.get("/conversations", headers=headers("nobody"))
        assert response.json() == {"items": []}


class TestMessages:

    def test_list_in_timestamp_order(self, client, db):
        db.insert_conversation(["alice", "bob"], conversation_id="c1", created_at=at(1))
        db.insert_message("c1", "bob", "second", at(20))
        db.insert_message("c1", "alice", "first", at(10))

        response = client.get("/conversations/c1/messages", headers=headers())

        assert response.status_code == 200
        assert [m["text"] for m in response.json()["items"]] == ["first", "second"]

    def test_unknown_conversation(self, client):
        assert client.get("/conversations/nope/messages", headers=headers()).status_code == 404

    def test_non_participant_is_rejected(self, client, db):
        db.insert_conversation(["alice", "bob"], conversation_id="c1", created_at=at(1))
        assert client.get("/conversations/c1/messages", headers=headers("mallory")).status_code == 403

    def test_send(self, client, db):
        db.insert_conversation(["alice", "bob"], conversation_id="c1", created_at=at(1))

        response = client.post("/conversations/c1/messages", json={"text": "  hi  "}, headers=headers("bob", "Bob"))

        assert response.status_code == 201
        body = response.json()
        assert (body["text"], body["sender_id"], body["sender_name"]) == ("hi", "bob", "Bob")
        assert db.conversations["c1"]["last_message"] == "hi"

    def test_send_blank_is_rejected_without_writes(self, client, db):
        db.insert_conversation(["alice", "bob"], conversation_id="c1", created_at=at(1))

        response = client.post("/conversations/c1/messages", json={"text": "   "}, headers=headers())

        assert response.status_code == 400
        assert db.messages == {}
        assert db.conversations["c1"]["last_message"] is None

    def test_send_failure_returns_original_text(self, client, db, conversations):
        db.insert_conversation(["alice", "bob"], conversation_id="c1", created_at=at(1))

        async def broken(conversation_id, last_message):
            raise RuntimeError("unavailable")

        conversations.update_summary = broken

        response = client.post("/conversations/c1/messages", json={"text": " hey "}, headers=headers())

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["text"] == " hey "
        assert detail["message_created"] is True
