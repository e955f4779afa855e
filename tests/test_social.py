import pytest
from pymongo.errors import PyMongoError

import social
from errors import NotFound, ServerError, ValidationError


def befriend(client, a, b):
    assert client.post("/sendFriendRequest", json={"friend_id": b["id"]}, headers=a["headers"]).status_code == 200
    assert client.post("/acceptFriendRequest", json={"friend_id": a["id"]}, headers=b["headers"]).status_code == 200


def test_request_accept_scenario(client, make_user):
    """A asks B, B accepts, each sees exactly the other as friend"""
    a = make_user("Ann")
    b = make_user("Ben")

    res = client.post("/sendFriendRequest", json={"friend_id": b["id"]}, headers=a["headers"])
    assert res.json() == {"message": "Friend request sent successfully"}

    pending = client.get("/getFriendRequests", headers=b["headers"]).json()
    assert [p["id"] for p in pending] == [a["id"]]
    assert pending[0]["name"] == "Ann"

    res = client.post("/acceptFriendRequest", json={"friend_id": a["id"]}, headers=b["headers"])
    assert res.json() == {"message": "Friend request accepted"}

    assert [f["id"] for f in client.get("/getFriends", headers=a["headers"]).json()] == [b["id"]]
    assert [f["id"] for f in client.get("/getFriends", headers=b["headers"]).json()] == [a["id"]]
    assert client.get("/getFriendRequests", headers=a["headers"]).json() == []
    assert client.get("/getFriendRequests", headers=b["headers"]).json() == []


def test_accept_clears_pending_in_both_directions(client, make_user, load_user):
    a = make_user("Ann")
    b = make_user("Ben")
    client.post("/sendFriendRequest", json={"friend_id": b["id"]}, headers=a["headers"])
    client.post("/sendFriendRequest", json={"friend_id": a["id"]}, headers=b["headers"])

    client.post("/acceptFriendRequest", json={"friend_id": a["id"]}, headers=b["headers"])

    ann, ben = load_user(a["id"]), load_user(b["id"])
    assert ann["friends"] == [b["id"]] and ben["friends"] == [a["id"]]
    assert ann["friend_requests"] == [] and ben["friend_requests"] == []


def test_cannot_request_self(client, make_user):
    a = make_user("Ann")
    res = client.post("/sendFriendRequest", json={"friend_id": a["id"]}, headers=a["headers"])
    assert res.status_code == 400
    assert res.json()["error"] == "Cannot send request to yourself"


def test_duplicate_request_rejected(client, make_user):
    a = make_user("Ann")
    b = make_user("Ben")
    client.post("/sendFriendRequest", json={"friend_id": b["id"]}, headers=a["headers"])
    res = client.post("/sendFriendRequest", json={"friend_id": b["id"]}, headers=a["headers"])
    assert res.status_code == 400
    assert res.json()["error"] == "Friend request already sent"


def test_request_to_existing_friend_rejected(client, make_user):
    a = make_user("Ann")
    b = make_user("Ben")
    befriend(client, a, b)
    for sender, target in ((a, b), (b, a)):
        res = client.post("/sendFriendRequest", json={"friend_id": target["id"]}, headers=sender["headers"])
        assert res.status_code == 400
        assert res.json()["error"] == "Already friends"


def test_request_to_unknown_user(client, make_user):
    a = make_user("Ann")
    res = client.post("/sendFriendRequest", json={"friend_id": "5f0000000000000000000000"}, headers=a["headers"])
    assert res.status_code == 404
    res = client.post("/sendFriendRequest", json={"friend_id": "bogus"}, headers=a["headers"])
    assert res.status_code == 400


def test_accept_without_request(client, make_user):
    a = make_user("Ann")
    b = make_user("Ben")
    res = client.post("/acceptFriendRequest", json={"friend_id": a["id"]}, headers=b["headers"])
    assert res.status_code == 400
    assert res.json()["error"] == "No friend request from this user"


def test_reject_returns_pair_to_none(client, make_user):
    a = make_user("Ann")
    b = make_user("Ben")
    client.post("/sendFriendRequest", json={"friend_id": b["id"]}, headers=a["headers"])

    res = client.post("/rejectFriendRequest", json={"friend_id": a["id"]}, headers=b["headers"])
    assert res.json() == {"message": "Friend request rejected"}
    assert client.get("/getFriendRequests", headers=b["headers"]).json() == []
    assert client.get("/getFriends", headers=b["headers"]).json() == []

    # nothing stops a new request
    res = client.post("/sendFriendRequest", json={"friend_id": b["id"]}, headers=a["headers"])
    assert res.status_code == 200

    res = client.post("/rejectFriendRequest", json={"friend_id": b["id"]}, headers=a["headers"])
    assert res.status_code == 400


def test_accept_rolls_back_when_second_write_fails(db, make_user, load_user):
    a = make_user("Ann")
    b = make_user("Ben")
    social.send_request(db, load_user(a["id"]), b["id"])

    class FlakyUsers:
        """Fails the second update, i.e. the write to the requester."""

        def __init__(self, collection):
            self.collection = collection
            self.updates = 0

        def __getattr__(self, name):
            return getattr(self.collection, name)

        def update_one(self, *args, **kwargs):
            self.updates += 1
            if self.updates == 2:
                raise PyMongoError("connection reset")
            return self.collection.update_one(*args, **kwargs)

    flaky_db = {"user": FlakyUsers(db["user"])}
    with pytest.raises(ServerError):
        social.accept_request(flaky_db, load_user(b["id"]), a["id"])

    ann, ben = load_user(a["id"]), load_user(b["id"])
    assert ben["friends"] == [] and ann["friends"] == []
    assert ben["friend_requests"] == [a["id"]]


def test_service_errors(db, make_user, load_user):
    a = make_user("Ann")
    with pytest.raises(ValidationError):
        social.send_request(db, load_user(a["id"]), a["id"])
    with pytest.raises(NotFound):
        social.accept_request(db, load_user(a["id"]), "5f0000000000000000000000")
