from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional

# Auction value objects. Storage hands these out and the engine only ever
# reads them; changes go back through the repository.

ACTIVE = "active"
ENDED = "ended"
AUCTION_STATUSES = (ACTIVE, ENDED)

FILE_KINDS = ("image", "document")


@dataclass
class AuctionItem:
    id: str
    title: str
    description: str
    file_url: str
    file_type: str
    start_price: int
    current_price: int
    end_date: datetime
    seller_id: str
    seller_nickname: str
    seller_reputation: int = 0
    highest_bidder_id: Optional[str] = None
    highest_bidder_nickname: Optional[str] = None
    status: str = ACTIVE
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    def is_expired(self, now: datetime) -> bool:
        return now > self.end_date

    def to_dict(self) -> dict:
        data = asdict(self)
        data["end_date"] = self.end_date.isoformat()
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data


@dataclass
class AuctionChanges:
    """Fields a single accepted bid writes onto the item."""
    current_price: int
    highest_bidder_id: str
    highest_bidder_nickname: str
    end_date: datetime


@dataclass
class Bid:
    auction_id: str
    bidder_id: str
    bidder_nickname: str
    price: int
    created_at: datetime
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "auction_id": self.auction_id,
            "bidder_id": self.bidder_id,
            "bidder_nickname": self.bidder_nickname,
            "price": self.price,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class AuditLogEntry:
    auction_id: str
    bidder_id: str
    bidder_nickname: str
    price: int
    timestamp: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class Notification:
    user_id: str
    message: str
    link: Optional[str] = None
    is_read: bool = False
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data


@dataclass
class BidResult:
    new_price: int
    new_end_date: datetime
    bidder_reputation: int = 0
    extended: bool = False


@dataclass
class CloseResult:
    closed: bool
    was_transitioned: bool
    item: AuctionItem


@dataclass
class AuctionDetail:
    item: AuctionItem
    can_bid: bool
    bids: list = field(default_factory=list)
