import asyncio

from conftest import RecordingConnection


def run(coro):
    return asyncio.run(coro)


def test_join_announces_occupancy(broadcaster):
    alice, bob = RecordingConnection("alice"), RecordingConnection("bob")

    run(broadcaster.join(alice, "a1"))
    run(broadcaster.join(bob, "a1"))

    assert alice.of_type("room:update") == [{"type": "room:update", "count": 1},
                                             {"type": "room:update", "count": 2}]
    assert bob.of_type("room:update") == [{"type": "room:update", "count": 2}]
    assert broadcaster.count("a1") == 2
    assert broadcaster.room_of(alice) == "a1"


def test_connection_is_in_one_room_at_a_time(broadcaster):
    alice, bob = RecordingConnection("alice"), RecordingConnection("bob")
    run(broadcaster.join(alice, "a1"))
    run(broadcaster.join(bob, "a1"))

    run(broadcaster.join(alice, "a2"))

    assert broadcaster.room_of(alice) == "a2"
    assert broadcaster.count("a1") == 1
    assert broadcaster.count("a2") == 1
    assert bob.of_type("room:update")[-1] == {"type": "room:update", "count": 1}


def test_leave_drops_empty_rooms(broadcaster):
    alice, bob = RecordingConnection("alice"), RecordingConnection("bob")
    run(broadcaster.join(alice, "a1"))
    run(broadcaster.join(bob, "a1"))

    run(broadcaster.leave(alice))
    assert bob.of_type("room:update")[-1]["count"] == 1

    run(broadcaster.leave(bob))
    assert "a1" not in broadcaster.rooms
    assert broadcaster.room_status() == []

    # leaving twice is a no-op
    run(broadcaster.leave(bob))


def test_chat_reaches_everyone_including_sender(broadcaster):
    alice, bob, elsewhere = RecordingConnection(), RecordingConnection(), RecordingConnection()
    run(broadcaster.join(alice, "a1"))
    run(broadcaster.join(bob, "a1"))
    run(broadcaster.join(elsewhere, "a2"))

    run(broadcaster.broadcast_chat("a1", {"nickname": "brave-fox", "msg": "still selling?"}))

    expected = [{"type": "chat:new_message", "nickname": "brave-fox", "msg": "still selling?"}]
    assert alice.of_type("chat:new_message") == expected
    assert bob.of_type("chat:new_message") == expected
    assert elsewhere.of_type("chat:new_message") == []


def test_broken_connection_is_dropped(broadcaster):
    alice = RecordingConnection("alice")
    run(broadcaster.join(alice, "a1"))
    broken = RecordingConnection("broken")
    broadcaster.rooms["a1"][id(broken)] = broken
    broadcaster._room_of[id(broken)] = "a1"
    broken.fail = True

    run(broadcaster.broadcast_auction_ended("a1", {"highestBidderId": "b1", "highestBidderNickname": "B1"}))

    assert broadcaster.count("a1") == 1
    assert broadcaster.room_of(broken) is None
    assert alice.of_type("auction:ended") == [
        {"type": "auction:ended", "highestBidderId": "b1", "highestBidderNickname": "B1"}
    ]
    assert alice.of_type("room:update")[-1]["count"] == 1


def test_room_status(broadcaster):
    run(broadcaster.join(RecordingConnection(), "a1"))
    run(broadcaster.join(RecordingConnection(), "a1"))
    run(broadcaster.join(RecordingConnection(), "a2"))

    status = sorted(broadcaster.room_status(), key=lambda r: r["auction_id"])
    assert status == [
        {"auction_id": "a1", "participants": 2},
        {"auction_id": "a2", "participants": 1},
    ]
