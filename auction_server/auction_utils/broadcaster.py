from typing import Any, Dict, Optional

from auction_logs.loggers import realtime_logger

# Event names on the wire. Every message is a JSON object {"type": <event>, ...}.
ROOM_UPDATE = "room:update"
BID_UPDATE = "bid:update"
CHAT_NEW_MESSAGE = "chat:new_message"
AUCTION_ENDED = "auction:ended"


class RealtimeBroadcaster:
    """
    Room registry for live auction pages. One room per auction id; a
    connection sits in at most one room at a time. Connections are anything
    with an async `send_json(dict)` (a starlette WebSocket in production).

    Membership is in-memory and per process. Delivery is best effort: a
    connection that fails to receive is dropped from its room.
    """

    def __init__(self):
        # auction id -> {id(connection): connection}
        self.rooms: Dict[str, Dict[int, Any]] = {}
        self._room_of: Dict[int, str] = {}

    def room_of(self, connection) -> Optional[str]:
        return self._room_of.get(id(connection))

    def count(self, auction_id: str) -> int:
        return len(self.rooms.get(auction_id, {}))

    def room_status(self) -> list:
        """Occupancy of every live room"""
        return [
            {"auction_id": auction_id, "participants": len(members)}
            for auction_id, members in self.rooms.items()
        ]

    async def join(self, connection, auction_id: str):
        """Move a connection into the room for `auction_id`"""
        previous = self._room_of.get(id(connection))
        if previous == auction_id:
            await self._send_count(auction_id)
            return
        if previous is not None:
            await self.leave(connection)

        self.rooms.setdefault(auction_id, {})[id(connection)] = connection
        self._room_of[id(connection)] = auction_id

        #log code
        realtime_logger.info(
            "room_joined",
            auction_id=auction_id,
            total_participants=self.count(auction_id)
        )

        await self._send_count(auction_id)

    async def leave(self, connection):
        """Remove a connection from whatever room it is in"""
        auction_id = self._room_of.pop(id(connection), None)
        if auction_id is None:
            return

        members = self.rooms.get(auction_id)
        if members is not None:
            members.pop(id(connection), None)
            if not members:
                del self.rooms[auction_id]

        #log code
        realtime_logger.info(
            "room_left",
            auction_id=auction_id,
            total_participants=self.count(auction_id)
        )

        if self.count(auction_id):
            await self._send_count(auction_id)

    async def broadcast_bid_update(self, auction_id: str, payload: dict):
        await self.broadcast(auction_id, {"type": BID_UPDATE, **payload})

    async def broadcast_chat(self, auction_id: str, payload: dict):
        # the sender is a member too and gets its own message back
        await self.broadcast(auction_id, {"type": CHAT_NEW_MESSAGE, **payload})

    async def broadcast_auction_ended(self, auction_id: str, payload: dict):
        await self.broadcast(auction_id, {"type": AUCTION_ENDED, **payload})

    async def broadcast(self, auction_id: str, message: dict):
        """Send a message to every member of one room"""
        disconnected = []
        # copy: leave() below may reshape the room
        for connection in list(self.rooms.get(auction_id, {}).values()):
            try:
                await connection.send_json(message)
            except Exception as e:
                #log code
                realtime_logger.warning(
                    "room_send_failed",
                    auction_id=auction_id,
                    event=message.get("type"),
                    error=str(e)
                )
                disconnected.append(connection)

        # Clean up disconnected clients
        for connection in disconnected:
            await self.leave(connection)

    async def _send_count(self, auction_id: str):
        await self.broadcast(auction_id, {"type": ROOM_UPDATE, "count": self.count(auction_id)})
