"""
Tests for sending messages, conversation threads and read receipts.
"""
import pytest
from sqlalchemy import select

from models import Message


@pytest.fixture
def pair(register):
    alice, alice_headers = register("alice")
    bob, bob_headers = register("bob")
    return alice, alice_headers, bob, bob_headers


def send(client, headers, receiver_id, content, **extra):
    return client.post("/api/messages", json={"receiver_id": receiver_id, "content": content, **extra}, headers=headers)


class TestSendMessage:
    def test_send(self, client, pair):
        alice, alice_headers, bob, _ = pair
        response = send(client, alice_headers, bob["id"], "Is the bike still available?")

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["sender_id"] == alice["id"]
        assert data["is_read"] is False

    def test_unknown_receiver(self, client, pair):
        _, alice_headers, _, _ = pair
        assert send(client, alice_headers, 999, "hello").status_code == 404

    def test_unknown_product(self, client, pair):
        _, alice_headers, bob, _ = pair
        assert send(client, alice_headers, bob["id"], "hello", product_id=999).status_code == 404

    def test_content_required(self, client, pair):
        _, alice_headers, bob, _ = pair
        assert send(client, alice_headers, bob["id"], "").status_code == 400


class TestConversationThread:
    def test_fetch_marks_only_counterpart_messages_read(self, client, database, pair):
        alice, alice_headers, bob, bob_headers = pair
        send(client, alice_headers, bob["id"], "Hi Bob")
        send(client, bob_headers, alice["id"], "Hi Alice")
        send(client, bob_headers, alice["id"], "Still there?")

        response = client.get(f"/api/messages/conversation/{bob['id']}", headers=alice_headers)

        assert response.status_code == 200
        body = response.json()
        assert [m["content"] for m in body["messages"]] == ["Hi Bob", "Hi Alice", "Still there?"]
        assert body["messages"][0]["sender_name"] == "alice"
        assert body["other_user"]["username"] == "bob"
        assert body["pagination"]["total"] == 3

        with database.session() as s:
            rows = s.execute(select(Message.sender_id, Message.is_read)).all()
        assert {(sender, read) for sender, read in rows} == {(alice["id"], False), (bob["id"], True)}

    def test_pages_are_newest_first_but_returned_oldest_first(self, client, pair):
        alice, alice_headers, bob, _ = pair
        for i in range(5):
            send(client, alice_headers, bob["id"], f"msg {i}")

        body = client.get(
            f"/api/messages/conversation/{bob['id']}", params={"limit": 2}, headers=alice_headers
        ).json()

        assert [m["content"] for m in body["messages"]] == ["msg 3", "msg 4"]
        assert body["pagination"]["total_pages"] == 3

    def test_product_filter(self, client, pair, make_product):
        alice, alice_headers, bob, _ = pair
        product_id = make_product(bob["id"])
        send(client, alice_headers, bob["id"], "about the product", product_id=product_id)
        send(client, alice_headers, bob["id"], "unrelated")

        body = client.get(
            f"/api/messages/conversation/{bob['id']}", params={"product_id": product_id}, headers=alice_headers
        ).json()

        assert [m["content"] for m in body["messages"]] == ["about the product"]
        assert body["messages"][0]["product_title"] == "Used phone"
        assert body["pagination"]["total"] == 1

    def test_blank_product_filter_is_ignored(self, client, pair):
        alice, alice_headers, bob, _ = pair
        send(client, alice_headers, bob["id"], "one")
        send(client, alice_headers, bob["id"], "two")

        response = client.get(
            f"/api/messages/conversation/{bob['id']}", params={"product_id": ""}, headers=alice_headers
        )

        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 2

    def test_unknown_user(self, client, pair):
        _, alice_headers, _, _ = pair
        assert client.get("/api/messages/conversation/999", headers=alice_headers).status_code == 404


class TestReadReceipts:
    def test_unread_count_has_no_side_effect(self, client, pair):
        alice, alice_headers, bob, bob_headers = pair
        send(client, alice_headers, bob["id"], "one")
        send(client, alice_headers, bob["id"], "two")

        first = client.get("/api/messages/unread-count", headers=bob_headers).json()
        second = client.get("/api/messages/unread-count", headers=bob_headers).json()

        assert first["unread_count"] == 2
        assert second["unread_count"] == 2

    def test_mark_read(self, client, pair):
        alice, alice_headers, bob, bob_headers = pair
        send(client, alice_headers, bob["id"], "one")

        client.put(f"/api/messages/read/{alice['id']}", headers=bob_headers)

        assert client.get("/api/messages/unread-count", headers=bob_headers).json()["unread_count"] == 0


class TestConversations:
    def test_one_entry_per_counterpart(self, client, pair, register):
        alice, alice_headers, bob, bob_headers = pair
        carol, carol_headers = register("carol")
        send(client, alice_headers, bob["id"], "hello bob")
        send(client, bob_headers, alice["id"], "hello alice")
        send(client, carol_headers, alice["id"], "hi from carol")

        conversations = client.get("/api/messages/conversations", headers=alice_headers).json()["conversations"]

        by_user = {c["username"]: c for c in conversations}
        assert set(by_user) == {"bob", "carol"}
        assert conversations[0]["username"] == "carol"
        assert by_user["bob"]["last_message"] == "hello alice"
        assert by_user["bob"]["unread_count"] == 1
        assert by_user["carol"]["unread_count"] == 1


class TestDeleteMessage:
    def test_participants_only(self, client, pair, register):
        alice, alice_headers, bob, bob_headers = pair
        _, stranger_headers = register()
        message_id = send(client, alice_headers, bob["id"], "delete me").json()["data"]["id"]

        assert client.delete(f"/api/messages/{message_id}", headers=stranger_headers).status_code == 404
        assert client.delete(f"/api/messages/{message_id}", headers=bob_headers).status_code == 200
        assert client.delete(f"/api/messages/{message_id}", headers=alice_headers).status_code == 404
