import requests
import json
import threading
import time
import os
import websocket
from urllib.parse import urlencode
from datetime import datetime, timedelta, timezone
from auction_client.utils.pretty_display import (
    print_info, print_error, print_border, print_startup_message,
    print_auction_summary, print_bid_history
)

ROOM_HELP = "Commands: bid <amount>, chat <message>, status, end, help, exit"


class AuctionClientError(Exception):
    """A non-2xx answer from the server, carrying its error body."""

    def __init__(self, status_code: int, message: str, code: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code


class AuctionClient:
    def __init__(self, base_url: str, user_uuid: str, nickname: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.user_uuid = user_uuid
        self.nickname = nickname
        self.timeout = timeout
        self.session = requests.Session()
        self.current_auction_id = None
        self._room_joined = threading.Event()
        self._ws_app = None
        self._ws_thread = None

    @property
    def is_in_auction_room(self) -> bool:
        return self._room_joined.is_set()

    def _request(self, method: str, path: str, **kwargs):
        response = self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {"error": response.text}

        if response.status_code >= 400:
            detail = body.get("error") or body.get("detail") or f"HTTP {response.status_code}"
            raise AuctionClientError(response.status_code, str(detail), body.get("code"))
        return body

    # HTTP routes

    def list_auctions(self, status: str = None):
        return self._request("GET", "/auction", params={"status": status} if status else None)

    def get_auction(self, auction_id: str):
        """Fetch an auction page (this also lets the server close it if overdue)."""
        return self._request("GET", f"/auction/{auction_id}", params={"viewer_uuid": self.user_uuid})

    def create_auction(self, title: str, description: str, file_url: str, file_type: str,
                       start_price: int, end_date: datetime):
        return self._request("POST", "/auction", json={
            "seller_uuid": self.user_uuid,
            "seller_nickname": self.nickname,
            "title": title,
            "description": description,
            "file_url": file_url,
            "file_type": file_type,
            "start_price": start_price,
            "end_date": end_date.isoformat()
        })

    def place_bid(self, auction_id: str, price: int):
        return self._request("POST", f"/auction/{auction_id}/bid", json={
            "bidder_uuid": self.user_uuid,
            "bidder_nickname": self.nickname,
            "price": price
        })

    def try_end(self, auction_id: str):
        return self._request("POST", f"/auction/{auction_id}/try-end")

    def get_audit_trail(self, auction_id: str):
        return self._request("GET", f"/auction/{auction_id}/audit")

    def get_reputation(self):
        return self._request("GET", f"/users/{self.user_uuid}/reputation")

    def get_notifications(self, unread_only: bool = False):
        return self._request("GET", f"/notifications/{self.user_uuid}",
                             params={"unread_only": str(unread_only).lower()})

    def mark_notification_read(self, notification_id: int):
        return self._request("POST", f"/notifications/{notification_id}/read",
                             json={"user_uuid": self.user_uuid})

    # live room socket

    def ws_url(self) -> str:
        base = self.base_url
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        query = urlencode({"user_uuid": self.user_uuid, "nickname": self.nickname})
        return f"{base}/ws/auction?{query}"

    def join_auction_room(self, auction_id: str, on_message=None, timeout: float = 5.0) -> bool:
        """Open the live socket on a background thread and join one auction's room.
        Returns once the server has confirmed the join, or False after `timeout`."""
        if self._ws_app:
            self.leave_auction_room()

        self.current_auction_id = auction_id
        handler = on_message or self.handle_room_event

        def _on_open(ws):
            ws.send(json.dumps({"type": "join:room", "auctionId": auction_id}))

        def _on_message(ws, message):
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                print_info(f"Raw WS message: {message}")
                return
            # the first room:update is the server's join confirmation
            if data.get("type") == "room:update":
                self._room_joined.set()
            handler(data)

        def _on_close(ws, close_status_code, close_msg):
            self._room_joined.clear()
            print_info(f"Left auction room {auction_id}")

        def _on_error(ws, error):
            print_error(f"Auction websocket error: {error}")

        self._ws_app = websocket.WebSocketApp(
            self.ws_url(),
            on_open=_on_open,
            on_message=_on_message,
            on_close=_on_close,
            on_error=_on_error,
        )
        self._ws_thread = threading.Thread(target=self._ws_app.run_forever, daemon=True)
        self._ws_thread.start()

        return self._room_joined.wait(timeout)

    def handle_room_event(self, data: dict):
        """Default printer for room events."""
        msg_type = data.get("type")

        if msg_type == "room:update":
            print(f" {data.get('count', 0)} people watching")

        elif msg_type == "bid:update":
            print(f" New bid: {data.get('newPrice')} by {data.get('bidderNickname')} "
                  f"(reputation {data.get('bidderReputation')}), ends {data.get('newEndDate')}")

        elif msg_type == "chat:new_message":
            print(f" <{data.get('nickname', '?')}> {data.get('msg', '')}")

        elif msg_type == "auction:ended":
            print_border()
            print(f" AUCTION ENDED, won by {data.get('highestBidderNickname', 'Unknown')}")
            print_border()

        elif msg_type == "error":
            print_error(data.get("error", "Unknown error"), data.get("code"))

    def send_room_message(self, payload: dict) -> bool:
        if not self.is_in_auction_room:
            return False
        self._ws_app.send(json.dumps(payload))
        return True

    def send_chat(self, msg: str) -> bool:
        return self.send_room_message({"type": "chat:send", "nickname": self.nickname, "msg": msg})

    def request_end(self) -> bool:
        return self.send_room_message({"type": "auction:try_end", "auctionId": self.current_auction_id})

    def leave_auction_room(self) -> bool:
        if not self._ws_app:
            return False
        self._ws_app.close()
        self._ws_app = None
        self._room_joined.clear()
        self.current_auction_id = None
        return True


def parse_room_command(command: str):
    """Split one line typed inside a room into (command, argument)."""
    parts = command.strip().split(maxsplit=1)
    if not parts:
        return None, None

    cmd, rest = parts[0].lower(), (parts[1] if len(parts) > 1 else "")

    if cmd == "bid":
        if not rest:
            return "invalid", "Usage: bid <amount>"
        try:
            return "bid", int(rest.split()[0])
        except ValueError:
            return "invalid", "Bid amount must be a number"

    if cmd == "chat":
        if not rest:
            return "invalid", "Usage: chat <message>"
        return "chat", rest

    if cmd in ("status", "end", "exit", "help"):
        return cmd, None

    return "invalid", f"Unknown command: {cmd}"


def auction_room_interface(client: AuctionClient):
    """Interactive loop for the room the client has joined."""
    auction_id = client.current_auction_id
    print_info(f"Entered auction room {auction_id}")
    print_info(ROOM_HELP)
    print_border()

    while client.is_in_auction_room:
        try:
            user_input = input("Auction> ")
        except (KeyboardInterrupt, EOFError):
            print("\nLeaving auction room...")
            client.leave_auction_room()
            break

        command, arg = parse_room_command(user_input)

        try:
            if command == "bid":
                result = client.place_bid(auction_id, arg)
                print_info(f"Bid accepted at {result['newPrice']}, ends {result['newEndDate']}")

            elif command == "chat":
                client.send_chat(arg)

            elif command == "status":
                detail = client.get_auction(auction_id)
                print_auction_summary(detail)
                print_bid_history(detail.get("bids", []))

            elif command == "end":
                client.request_end()

            elif command == "help":
                print(ROOM_HELP)

            elif command == "exit":
                client.leave_auction_room()
                print("Left auction room.")
                break

            elif command == "invalid":
                print_error(arg)

        except AuctionClientError as e:
            print_error(e.message, e.code)


def list_item_interactive(client: AuctionClient):
    try:
        title = input("Title: ")
        description = input("Description: ")
        file_url = input("File URL: ")
        file_type = input("File type (image/document): ").strip() or "image"
        start_price = int(input("Start price: "))
        minutes = int(input("Duration in minutes: "))
    except ValueError:
        print_error("Please enter whole numbers for price and duration.")
        return

    end_date = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    item = client.create_auction(title, description, file_url, file_type, start_price, end_date)
    print_info(f"Listed as {item['id']}")


def main():
    base_url = os.getenv("AUCTION_URL", "http://localhost:8000")
    print_border()
    user_uuid = input("Your user id: ").strip()
    nickname = input("Your anonymous nickname: ").strip()
    client = AuctionClient(base_url, user_uuid, nickname)

    while True:
        print_startup_message()
        choice = input("Enter choice (1-6): ").strip()

        try:
            if choice == "1":
                for auction in client.list_auctions(status="active").get("auctions", []):
                    print_auction_summary(auction)

            elif choice == "2":
                list_item_interactive(client)

            elif choice == "3":
                auction_id = input("Auction id: ").strip()
                if client.join_auction_room(auction_id):
                    auction_room_interface(client)
                else:
                    print_error("Could not join the auction room.")
                    client.leave_auction_room()

            elif choice == "4":
                for notification in client.get_notifications(unread_only=True).get("notifications", []):
                    print(f" - {notification['message']} ({notification.get('link') or ''})")
                    client.mark_notification_read(notification["id"])

            elif choice == "5":
                print_info(f"Reputation: {client.get_reputation()['reputation']}")

            elif choice == "6":
                break

            else:
                print("Invalid choice. Please enter 1-6.")

        except AuctionClientError as e:
            print_error(e.message, e.code)
        except requests.ConnectionError:
            print_error(f"Cannot reach the auction server at {base_url}")


if __name__ == "__main__":
    main()
