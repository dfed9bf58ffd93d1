import pytest
from starlette.websockets import WebSocketDisconnect

from conftest import add_item, register


def test_wishlist_toggle_and_list(client, alice, bob):
    item = add_item(client, alice, "Bookshelf")
    url = f"/wishlist/{item['id']}/toggle"
    assert client.post(url, headers=bob["headers"]).json()["wishlisted"] is True

    entries = client.get("/wishlist", headers=bob["headers"]).json()
    assert [e["item"]["title"] for e in entries] == ["Bookshelf"]

    assert client.post(url, headers=bob["headers"]).json() == {"wishlisted": False}
    assert client.get("/wishlist", headers=bob["headers"]).json() == []


def test_wishlist_remove_entry(client, alice, bob):
    item = add_item(client, alice)
    entry_id = client.post(f"/wishlist/{item['id']}/toggle", headers=bob["headers"]).json()["id"]
    assert client.delete(f"/wishlist/{entry_id}", headers=alice["headers"]).status_code == 404
    assert client.delete(f"/wishlist/{entry_id}", headers=bob["headers"]).status_code == 200


def test_deleted_item_leaves_wishlist(client, alice, bob):
    item = add_item(client, alice)
    client.post(f"/wishlist/{item['id']}/toggle", headers=bob["headers"])
    client.delete(f"/items/{item['id']}", headers=alice["headers"])
    assert client.get("/wishlist", headers=bob["headers"]).json() == []


def test_reports(client, alice, bob):
    res = client.post("/reports", data={"reason": "Spam"}, headers=alice["headers"])
    assert res.status_code == 400
    res = client.post("/reports", data={"reason": "Spam", "reported_user_id": bob["id"]}, headers=alice["headers"])
    assert res.status_code == 200
    assert res.json()["status"] == "pending"
    assert res.json()["reporter_id"] == alice["id"]
    res = client.post(
        "/reports",
        data={"reason": "Fake", "reported_item_id": "0123456789abcdef01234567"},
        headers=alice["headers"],
    )
    assert res.status_code == 404


def test_ratings_update_average(client, alice, bob):
    carol = register(client, "Carol")
    url = f"/users/{alice['id']}/ratings"
    assert client.post(url, data={"rating": 5}, headers=alice["headers"]).status_code == 400
    assert client.post(url, data={"rating": 0}, headers=bob["headers"]).status_code == 400

    client.post(url, data={"rating": 5, "comment": "Lovely"}, headers=bob["headers"])
    client.post(url, data={"rating": 4}, headers=carol["headers"])
    # rating again replaces the earlier one
    client.post(url, data={"rating": 3}, headers=carol["headers"])

    ratings = client.get(url).json()
    assert ratings["count"] == 2
    assert ratings["average"] == 4.0

    profile = client.get(f"/users/{alice['id']}").json()
    assert profile["rating"] == 4.0
    assert profile["review_count"] == 2
    assert "email" not in profile


def test_blocking(client, alice, bob):
    assert client.post(f"/users/{alice['id']}/block", headers=alice["headers"]).status_code == 400
    client.post(f"/users/{bob['id']}/block", headers=alice["headers"])
    client.post(f"/users/{bob['id']}/block", headers=alice["headers"])

    assert client.get(f"/users/{bob['id']}/blocked", headers=alice["headers"]).json() == {"blocked": True}
    blocked = client.get("/users/me/blocked", headers=alice["headers"]).json()
    assert [u["name"] for u in blocked] == ["Bob"]

    client.delete(f"/users/{bob['id']}/block", headers=alice["headers"])
    assert client.get(f"/users/{bob['id']}/blocked", headers=alice["headers"]).json() == {"blocked": False}
    assert client.get("/users/me/blocked", headers=alice["headers"]).json() == []


def test_leaderboard_ranks_by_eco_points(client, alice, bob):
    item = add_item(client, bob)
    client.post(f"/items/{item['id']}/complete", headers=bob["headers"])

    board = client.get("/leaderboard").json()
    assert [(e["user_name"], e["rank"], e["eco_points"]) for e in board] == [("Bob", 1, 20), ("Alice", 2, 0)]
    assert board[0]["items_donated"] == 1


def test_dashboard(client, alice, bob):
    for title in ("One", "Two", "Three", "Four"):
        add_item(client, alice, title)
    item = add_item(client, bob, "Lamp")
    client.post("/requests", data={"item_id": item["id"]}, headers=alice["headers"])

    stats = client.get("/users/me/dashboard", headers=alice["headers"]).json()
    assert stats["items_count"] == 4
    assert stats["sent_requests"] == 1
    assert stats["received_requests"] == 0
    assert stats["eco_points"] == 0
    assert len(stats["recent_items"]) == 3


def test_update_profile_renames_listings(client, alice):
    item = add_item(client, alice)
    res = client.put("/users/me", data={"name": "Alicia", "bio": "Declutterer"}, headers=alice["headers"])
    assert res.status_code == 200
    assert res.json()["bio"] == "Declutterer"
    assert client.get(f"/items/{item['id']}").json()["owner_name"] == "Alicia"


def test_notifications_read(client, alice, bob):
    item = add_item(client, alice)
    client.post("/requests", data={"item_id": item["id"]}, headers=bob["headers"])
    client.post(f"/items/{item['id']}/reviews", data={"rating": 5}, headers=bob["headers"])

    notes = client.get("/notifications", headers=alice["headers"]).json()
    assert notes["unread_count"] == 2
    first = notes["items"][0]["id"]

    assert client.post(f"/notifications/{first}/read", headers=bob["headers"]).status_code == 403
    assert client.post(f"/notifications/{first}/read", headers=alice["headers"]).status_code == 200
    assert client.get("/notifications", headers=alice["headers"]).json()["unread_count"] == 1

    assert client.post("/notifications/read-all", headers=alice["headers"]).json()["updated"] == 1
    assert client.get("/notifications", headers=alice["headers"]).json()["unread_count"] == 0


def test_notifications_feed(client, alice, bob):
    with client.websocket_connect(f"/ws/notifications?token={alice['token']}") as ws:
        assert ws.receive_json() == {"type": "snapshot", "items": []}
        item = add_item(client, alice)
        client.post("/requests", data={"item_id": item["id"]}, headers=bob["headers"])
        snapshot = ws.receive_json()
        assert [n["type"] for n in snapshot["items"]] == ["request"]


def test_notifications_feed_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/notifications?token=nope") as ws:
            ws.receive_json()
    assert exc.value.code == 1008


def test_health(client):
    assert client.get("/").json() == {"message": "Waste to Wish API is running"}
