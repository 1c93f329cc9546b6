import asyncio
import importlib
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def server(tmp_path, monkeypatch):
    """
    Point both databases at tmp_path and reload the server module so it
    builds its stores and engine from the new settings.
    """
    monkeypatch.setenv("AUCTION_DB_PATH", str(tmp_path / "db" / "auctions.db"))
    monkeypatch.setenv("ACCOUNTS_DB_PATH", str(tmp_path / "db" / "accounts.db"))
    monkeypatch.setenv("SWEEP_INTERVAL_SECONDS", "0")
    import auction_server.server as server_module
    return importlib.reload(server_module)


@pytest.fixture
def client(server):
    with TestClient(server.app) as c:
        yield c


def listing(**overrides):
    payload = {
        "seller_uuid": "seller-1",
        "seller_nickname": "quiet-otter",
        "title": "Organic chemistry textbook",
        "description": "Some highlighting",
        "file_url": "/uploads/book.jpg",
        "file_type": "image",
        "start_price": 1000,
        "end_date": (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat(),
    }
    payload.update(overrides)
    return payload


def create(client, **overrides):
    response = client.post("/auction", json=listing(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


def bid(client, auction_id, bidder, price):
    return client.post(f"/auction/{auction_id}/bid", json={
        "bidder_uuid": bidder,
        "bidder_nickname": bidder.upper(),
        "price": price,
    })


def expire(server, monkeypatch, by=timedelta(hours=2)):
    later = datetime.now(timezone.utc) + by
    monkeypatch.setattr(server.engine, "clock", lambda: later)


def test_create_and_view_auction(client):
    item = create(client)
    assert item["status"] == "active"
    assert item["current_price"] == 1000

    as_bidder = client.get(f"/auction/{item['id']}", params={"viewer_uuid": "bidder-1"}).json()
    as_seller = client.get(f"/auction/{item['id']}", params={"viewer_uuid": "seller-1"}).json()
    anonymous = client.get(f"/auction/{item['id']}").json()

    assert as_bidder["can_bid"] is True
    assert as_seller["can_bid"] is False
    assert anonymous["can_bid"] is False
    assert as_bidder["bids"] == []


def test_naive_end_date_is_taken_as_utc(client):
    naive = (datetime.now(timezone.utc) + timedelta(hours=1)).replace(tzinfo=None)
    item = create(client, end_date=naive.isoformat())
    assert item["end_date"].endswith("+00:00")


def test_invalid_listing_is_400(client):
    response = client.post("/auction", json=listing(file_type="spreadsheet"))
    assert response.status_code == 400
    assert response.json()["code"] == "InvalidListing"


def test_list_auctions(client):
    create(client, title="one")
    create(client, title="two")

    body = client.get("/auction", params={"status": "active"}).json()
    assert body["count"] == 2
    assert client.get("/auction", params={"status": "ended"}).json()["count"] == 0
    assert client.get("/auction", params={"status": "paused"}).status_code == 400


def test_bid_flow_and_error_codes(client):
    item = create(client)

    ok = bid(client, item["id"], "bidder-1", 1500)
    assert ok.status_code == 200
    assert ok.json()["newPrice"] == 1500
    assert ok.json()["newEndDate"] == item["end_date"]

    too_low = bid(client, item["id"], "bidder-2", 1200)
    assert too_low.status_code == 400
    assert too_low.json()["code"] == "InvalidBid"

    own = bid(client, item["id"], "seller-1", 5000)
    assert own.status_code == 403
    assert own.json()["code"] == "Forbidden"

    missing = bid(client, "no-such-auction", "bidder-1", 5000)
    assert missing.status_code == 404

    detail = client.get(f"/auction/{item['id']}").json()
    assert detail["highest_bidder_nickname"] == "BIDDER-1"
    assert [b["price"] for b in detail["bids"]] == [1500]


def test_reputation_and_audit_routes(client):
    item = create(client)
    bid(client, item["id"], "bidder-1", 1100)
    bid(client, item["id"], "bidder-2", 1200)

    assert client.get("/users/bidder-1/reputation").json() == {"user_id": "bidder-1", "reputation": 5}
    assert client.get("/users/seller-1/reputation").json()["reputation"] == 10

    audit = client.get(f"/auction/{item['id']}/audit").json()
    assert audit["count"] == 2
    assert [e["bidder_id"] for e in audit["entries"]] == ["bidder-1", "bidder-2"]
    assert client.get("/auction/missing/audit").status_code == 404


def test_try_end_and_notifications(client, server, monkeypatch):
    item = create(client)
    bid(client, item["id"], "bidder-1", 1100)

    early = client.post(f"/auction/{item['id']}/try-end").json()
    assert early == {"closed": False, "status": "active"}

    expire(server, monkeypatch)
    closed = client.post(f"/auction/{item['id']}/try-end").json()
    assert closed == {"closed": True, "status": "ended"}
    again = client.post(f"/auction/{item['id']}/try-end").json()
    assert again == {"closed": False, "status": "ended"}

    late = bid(client, item["id"], "bidder-2", 9000)
    assert late.status_code == 400
    assert late.json()["code"] == "AuctionClosed"

    notes = client.get("/notifications/seller-1").json()
    assert notes["count"] == 1
    note_id = notes["notifications"][0]["id"]

    assert client.post(f"/notifications/{note_id}/read", json={"user_uuid": "bidder-1"}).status_code == 404
    assert client.post(f"/notifications/{note_id}/read", json={"user_uuid": "seller-1"}).json() == {"success": True}
    assert client.get("/notifications/seller-1", params={"unread_only": "true"}).json()["count"] == 0
    assert client.get("/notifications/bidder-1").json()["count"] == 1


def test_websocket_room_receives_bid_updates_and_chat(client):
    item = create(client)

    with client.websocket_connect("/ws/auction?user_uuid=bidder-9&nickname=night-owl") as ws:
        ws.send_json({"type": "join:room", "auctionId": item["id"]})
        assert ws.receive_json() == {"type": "room:update", "count": 1}

        assert client.get("/auction/rooms").json() == {
            "rooms": [{"auction_id": item["id"], "participants": 1}]
        }

        bid(client, item["id"], "bidder-1", 1300)
        update = ws.receive_json()
        assert update["type"] == "bid:update"
        assert update["newPrice"] == 1300
        assert update["bidderNickname"] == "BIDDER-1"
        assert update["bidderReputation"] == 5

        ws.send_json({"type": "chat:send", "msg": "good luck"})
        assert ws.receive_json() == {"type": "chat:new_message", "nickname": "night-owl", "msg": "good luck"}

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_websocket_try_end_broadcasts_winner(client, server, monkeypatch):
    item = create(client)
    bid(client, item["id"], "bidder-1", 1300)

    with client.websocket_connect("/ws/auction?user_uuid=bidder-1") as ws:
        ws.send_json({"type": "join:room", "auctionId": item["id"]})
        ws.receive_json()

        expire(server, monkeypatch)
        ws.send_json({"type": "auction:try_end", "auctionId": item["id"]})
        assert ws.receive_json() == {
            "type": "auction:ended",
            "highestBidderId": "bidder-1",
            "highestBidderNickname": "BIDDER-1",
        }


def test_websocket_errors(client):
    with client.websocket_connect("/ws/auction?user_uuid=u1") as ws:
        ws.send_json({"type": "chat:send", "msg": "hello?"})
        assert ws.receive_json()["error"] == "Join a room first"

        ws.send_json({"type": "join:room", "auctionId": "ghost"})
        assert ws.receive_json()["code"] == "NotFound"

        ws.send_json({"type": "dance"})
        assert ws.receive_json()["type"] == "error"

        ws.send_json([1, 2])
        assert ws.receive_json() == {"type": "error", "error": "Messages must be JSON objects"}

        # the session survives a malformed frame
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_sweep_pass_survives_unexpected_errors(server, monkeypatch):
    calls = []

    async def broken_sweep():
        calls.append(1)
        raise RuntimeError("sweep lost its database handle")

    monkeypatch.setattr(server.engine, "sweep_expired", broken_sweep)

    assert asyncio.run(server.sweep_once()) == 0
    assert asyncio.run(server.sweep_once()) == 0
    assert len(calls) == 2

    log_dir = Path(os.environ["LOG_DIR"])
    assert "sweep lost its database handle" in (log_dir / "auction.log").read_text()


def test_admin_logs_router(client):
    item = create(client)
    bid(client, item["id"], "bidder-1", 1100)
    bid(client, item["id"], "bidder-2", 1250)

    trail = client.get(f"/admin/logs/bids/{item['id']}").json()
    assert trail["count"] == 2
    assert [r["price"] for r in trail["bids"]] == [1100, 1250]

    found = client.get("/admin/logs/search", params={
        "log_type": "auction", "event": "bid_success", "auction_id": item["id"]
    }).json()
    assert found["count"] == 2

    names = {log["name"] for log in client.get("/admin/logs/available").json()["logs"]}
    assert {"bids", "auction"}.issubset(names)

    assert client.get("/admin/logs/raw/secrets").status_code == 400
    assert client.get("/admin/logs/tail", params={"log_type": "secrets"}).status_code == 422


def test_responses_carry_request_id(client):
    assert client.get("/", headers={"X-Request-ID": "abc123"}).headers["X-Request-ID"] == "abc123"
    assert client.get("/").headers["X-Request-ID"]
