from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from auction_server.auction_utils.auction import (
    AuctionItem, AuctionChanges, Bid, AuditLogEntry, Notification
)

# Storage seams the engine is built against. The SQLite versions live in
# auction_server.utils.db_access.


class AuctionRepository(ABC):
    @abstractmethod
    def get(self, auction_id: str) -> AuctionItem: ...

    @abstractmethod
    def create(self, item: AuctionItem) -> AuctionItem: ...

    @abstractmethod
    def compare_and_update(
        self,
        auction_id: str,
        expected_price: int,
        changes: AuctionChanges,
        bid: Optional[Bid] = None,
        now: Optional[datetime] = None,
    ) -> AuctionItem:
        """Apply `changes` (and insert `bid`) only while the stored price is
        still `expected_price` and the item is active and unexpired.
        Raises ConflictFailure otherwise; nothing is written in that case."""

    @abstractmethod
    def transition_to_ended(self, auction_id: str, now: Optional[datetime] = None) -> tuple[AuctionItem, bool]:
        """Flip an expired active item to ended. Exactly one caller sees True."""

    @abstractmethod
    def list_bids(self, auction_id: str) -> list[Bid]: ...

    @abstractmethod
    def list_items(self, status: Optional[str] = None) -> list[AuctionItem]: ...

    @abstractmethod
    def list_expired(self, now: datetime) -> list[AuctionItem]: ...


class ReputationStore(ABC):
    @abstractmethod
    def get(self, user_id: str) -> int: ...

    @abstractmethod
    def increment(self, user_id: str, delta: int) -> int: ...

    @abstractmethod
    def ensure_user(self, user_id: str, nickname: str) -> None: ...


class AuditLog(ABC):
    @abstractmethod
    def append(self, entry: AuditLogEntry) -> None: ...

    @abstractmethod
    def for_auction(self, auction_id: str) -> list[AuditLogEntry]: ...


class NotificationSink(ABC):
    @abstractmethod
    def create(self, user_id: str, message: str, link: Optional[str] = None) -> Notification: ...

    @abstractmethod
    def list_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]: ...

    @abstractmethod
    def mark_read(self, notification_id: int, user_id: str) -> bool: ...
