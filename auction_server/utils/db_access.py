import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from auction_server.auction_utils.auction import (
    ACTIVE, ENDED, AuctionItem, AuctionChanges, Bid, AuditLogEntry, Notification
)
from auction_server.auction_utils.base import (
    AuctionRepository, ReputationStore, AuditLog, NotificationSink
)
from auction_server.auction_utils.errors import ConflictFailure, NotFound, StorageFailure

# Two SQLite files, one per store:
#   accounts: users (reputation) and the bid audit log
#   auctions: auction items, bids and notifications
# Timestamps are stored as integer UTC epoch microseconds so deadline
# comparisons can happen exactly inside the UPDATE statements.

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def get_db_connection(db_path, timeout: float = 5.0):
    try:
        conn = sqlite3.connect(db_path, timeout=timeout)
    except sqlite3.Error as e:
        raise StorageFailure(f"Could not open database {db_path}: {e}") from e
    conn.row_factory = sqlite3.Row  # Allows accessing columns by name
    return conn


def _to_ts(value: datetime) -> int:
    return (value - EPOCH) // timedelta(microseconds=1)


def _from_ts(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return EPOCH + timedelta(microseconds=value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def init_db(auction_db_path, accounts_db_path, timeout: float = 5.0):
    """
    Create both databases and their tables if they do not exist yet.
    """
    for path in (Path(auction_db_path), Path(accounts_db_path)):
        if not path.parent.exists():
            path.parent.mkdir(parents=True)

    conn = get_db_connection(auction_db_path, timeout)
    try:
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON;")
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS auction_items (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            file_url TEXT NOT NULL,
            file_type TEXT NOT NULL CHECK (file_type IN ('image', 'document')),
            start_price INTEGER NOT NULL CHECK (start_price >= 0),
            current_price INTEGER NOT NULL,
            end_date INTEGER NOT NULL,
            seller_id TEXT NOT NULL,
            seller_nickname TEXT NOT NULL,
            seller_reputation INTEGER NOT NULL DEFAULT 0,
            highest_bidder_id TEXT,
            highest_bidder_nickname TEXT,
            status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'ended')),
            created_at INTEGER NOT NULL,
            CHECK (current_price >= start_price)
        );
        """)
        # Bids are append-only; one row per accepted bid.
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS bids (
            id TEXT PRIMARY KEY,
            auction_id TEXT NOT NULL,
            bidder_id TEXT NOT NULL,
            bidder_nickname TEXT NOT NULL,
            price INTEGER NOT NULL,
            created_at INTEGER NOT NULL,
            FOREIGN KEY(auction_id) REFERENCES auction_items(id)
        );
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_bids_auction ON bids (auction_id);")
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            message TEXT NOT NULL,
            link TEXT,
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at INTEGER NOT NULL
        );
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, is_read);")
        conn.commit()
    except sqlite3.Error as e:
        raise StorageFailure(f"Could not initialise auction database: {e}") from e
    finally:
        conn.close()

    conn = get_db_connection(accounts_db_path, timeout)
    try:
        cursor = conn.cursor()
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            nickname TEXT NOT NULL DEFAULT '',
            reputation INTEGER NOT NULL DEFAULT 0
        );
        """)
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS bid_audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            auction_id TEXT NOT NULL,
            bidder_id TEXT NOT NULL,
            bidder_nickname TEXT NOT NULL,
            price INTEGER NOT NULL,
            timestamp INTEGER NOT NULL
        );
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_auction ON bid_audit_log (auction_id);")
        conn.commit()
    except sqlite3.Error as e:
        raise StorageFailure(f"Could not initialise accounts database: {e}") from e
    finally:
        conn.close()


def _row_to_item(row) -> AuctionItem:
    return AuctionItem(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        file_url=row["file_url"],
        file_type=row["file_type"],
        start_price=row["start_price"],
        current_price=row["current_price"],
        end_date=_from_ts(row["end_date"]),
        seller_id=row["seller_id"],
        seller_nickname=row["seller_nickname"],
        seller_reputation=row["seller_reputation"],
        highest_bidder_id=row["highest_bidder_id"],
        highest_bidder_nickname=row["highest_bidder_nickname"],
        status=row["status"],
        created_at=_from_ts(row["created_at"]),
    )


def _row_to_bid(row) -> Bid:
    return Bid(
        id=row["id"],
        auction_id=row["auction_id"],
        bidder_id=row["bidder_id"],
        bidder_nickname=row["bidder_nickname"],
        price=row["price"],
        created_at=_from_ts(row["created_at"]),
    )


class SQLiteAuctionRepository(AuctionRepository):
    def __init__(self, db_path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def _connect(self):
        return get_db_connection(self.db_path, self.timeout)

    def get(self, auction_id: str) -> AuctionItem:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM auction_items WHERE id = ?", (auction_id,))
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageFailure(f"Could not read auction {auction_id}: {e}") from e
        finally:
            conn.close()
        if row is None:
            raise NotFound(f"Auction {auction_id} not found")
        return _row_to_item(row)

    def create(self, item: AuctionItem) -> AuctionItem:
        # New listings always start open, at their start price, with no bidder.
        item.id = item.id or uuid.uuid4().hex
        item.status = ACTIVE
        item.current_price = item.start_price
        item.highest_bidder_id = None
        item.highest_bidder_nickname = None
        item.created_at = item.created_at or _utcnow()

        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO auction_items (
                    id, title, description, file_url, file_type, start_price,
                    current_price, end_date, seller_id, seller_nickname,
                    seller_reputation, highest_bidder_id, highest_bidder_nickname,
                    status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, ?, ?)
            """, (
                item.id, item.title, item.description, item.file_url, item.file_type,
                item.start_price, item.current_price, _to_ts(item.end_date),
                item.seller_id, item.seller_nickname, item.seller_reputation,
                item.status, _to_ts(item.created_at)
            ))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(f"Could not create auction: {e}") from e
        finally:
            conn.close()
        return item

    def compare_and_update(
        self,
        auction_id: str,
        expected_price: int,
        changes: AuctionChanges,
        bid: Optional[Bid] = None,
        now: Optional[datetime] = None,
    ) -> AuctionItem:
        now = now or _utcnow()
        conn = self._connect()
        try:
            cursor = conn.cursor()
            # The WHERE clause is the whole concurrency story: the row only
            # changes if nobody moved the price, closed the item, or let the
            # deadline pass since the caller read it. The end date may only grow.
            cursor.execute("""
                UPDATE auction_items
                SET current_price = ?,
                    highest_bidder_id = ?,
                    highest_bidder_nickname = ?,
                    end_date = ?
                WHERE id = ?
                  AND status = 'active'
                  AND current_price = ?
                  AND end_date > ?
                  AND end_date <= ?
            """, (
                changes.current_price,
                changes.highest_bidder_id,
                changes.highest_bidder_nickname,
                _to_ts(changes.end_date),
                auction_id,
                expected_price,
                _to_ts(now),
                _to_ts(changes.end_date),
            ))
            if cursor.rowcount != 1:
                conn.rollback()
                raise ConflictFailure(
                    f"Auction {auction_id} changed since price {expected_price} was read"
                )

            if bid is not None:
                bid.id = bid.id or uuid.uuid4().hex
                cursor.execute("""
                    INSERT INTO bids (id, auction_id, bidder_id, bidder_nickname, price, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (bid.id, bid.auction_id, bid.bidder_id, bid.bidder_nickname,
                      bid.price, _to_ts(bid.created_at)))

            cursor.execute("SELECT * FROM auction_items WHERE id = ?", (auction_id,))
            row = cursor.fetchone()
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(f"Could not update auction {auction_id}: {e}") from e
        finally:
            conn.close()
        return _row_to_item(row)

    def transition_to_ended(self, auction_id: str, now: Optional[datetime] = None) -> tuple[AuctionItem, bool]:
        now = now or _utcnow()
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE auction_items
                SET status = ?
                WHERE id = ? AND status = ? AND end_date < ?
            """, (ENDED, auction_id, ACTIVE, _to_ts(now)))
            was_transitioned = cursor.rowcount == 1

            cursor.execute("SELECT * FROM auction_items WHERE id = ?", (auction_id,))
            row = cursor.fetchone()
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(f"Could not close auction {auction_id}: {e}") from e
        finally:
            conn.close()

        if row is None:
            raise NotFound(f"Auction {auction_id} not found")
        return _row_to_item(row), was_transitioned

    def list_bids(self, auction_id: str) -> list[Bid]:
        """Bid history for one auction, newest first."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM bids
                WHERE auction_id = ?
                ORDER BY created_at DESC, price DESC
            """, (auction_id,))
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageFailure(f"Could not read bids for {auction_id}: {e}") from e
        finally:
            conn.close()
        return [_row_to_bid(row) for row in rows]

    def list_items(self, status: Optional[str] = None) -> list[AuctionItem]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            if status:
                cursor.execute("""
                    SELECT * FROM auction_items WHERE status = ? ORDER BY created_at DESC
                """, (status,))
            else:
                cursor.execute("SELECT * FROM auction_items ORDER BY created_at DESC")
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageFailure(f"Could not list auctions: {e}") from e
        finally:
            conn.close()
        return [_row_to_item(row) for row in rows]

    def list_expired(self, now: datetime) -> list[AuctionItem]:
        """Active items whose deadline has passed and are waiting to be closed."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM auction_items
                WHERE status = ? AND end_date < ?
                ORDER BY end_date
            """, (ACTIVE, _to_ts(now)))
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageFailure(f"Could not list expired auctions: {e}") from e
        finally:
            conn.close()
        return [_row_to_item(row) for row in rows]


class SQLiteReputationStore(ReputationStore):
    def __init__(self, db_path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def get(self, user_id: str) -> int:
        conn = get_db_connection(self.db_path, self.timeout)
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT reputation FROM users WHERE id = ?", (user_id,))
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageFailure(f"Could not read reputation for {user_id}: {e}") from e
        finally:
            conn.close()
        # unknown users simply have no reputation yet
        return row["reputation"] if row else 0

    def increment(self, user_id: str, delta: int) -> int:
        conn = get_db_connection(self.db_path, self.timeout)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO users (id, reputation) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET reputation = reputation + excluded.reputation
            """, (user_id, delta))
            cursor.execute("SELECT reputation FROM users WHERE id = ?", (user_id,))
            row = cursor.fetchone()
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(f"Could not update reputation for {user_id}: {e}") from e
        finally:
            conn.close()
        return row["reputation"]

    def ensure_user(self, user_id: str, nickname: str) -> None:
        conn = get_db_connection(self.db_path, self.timeout)
        try:
            conn.execute("""
                INSERT INTO users (id, nickname) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET nickname = excluded.nickname
            """, (user_id, nickname))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(f"Could not register user {user_id}: {e}") from e
        finally:
            conn.close()


class SQLiteAuditLog(AuditLog):
    def __init__(self, db_path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def append(self, entry: AuditLogEntry) -> None:
        conn = get_db_connection(self.db_path, self.timeout)
        try:
            conn.execute("""
                INSERT INTO bid_audit_log (auction_id, bidder_id, bidder_nickname, price, timestamp)
                VALUES (?, ?, ?, ?, ?)
            """, (entry.auction_id, entry.bidder_id, entry.bidder_nickname,
                  entry.price, _to_ts(entry.timestamp)))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(f"Could not append audit entry: {e}") from e
        finally:
            conn.close()

    def for_auction(self, auction_id: str) -> list[AuditLogEntry]:
        """Audit trail in acceptance order, for dispute resolution."""
        conn = get_db_connection(self.db_path, self.timeout)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT auction_id, bidder_id, bidder_nickname, price, timestamp
                FROM bid_audit_log
                WHERE auction_id = ?
                ORDER BY id
            """, (auction_id,))
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageFailure(f"Could not read audit log for {auction_id}: {e}") from e
        finally:
            conn.close()
        return [
            AuditLogEntry(
                auction_id=row["auction_id"],
                bidder_id=row["bidder_id"],
                bidder_nickname=row["bidder_nickname"],
                price=row["price"],
                timestamp=_from_ts(row["timestamp"]),
            )
            for row in rows
        ]


class SQLiteNotificationSink(NotificationSink):
    def __init__(self, db_path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def create(self, user_id: str, message: str, link: Optional[str] = None) -> Notification:
        created_at = _utcnow()
        conn = get_db_connection(self.db_path, self.timeout)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO notifications (user_id, message, link, is_read, created_at)
                VALUES (?, ?, ?, 0, ?)
            """, (user_id, message, link, _to_ts(created_at)))
            notification_id = cursor.lastrowid
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(f"Could not create notification for {user_id}: {e}") from e
        finally:
            conn.close()
        return Notification(
            id=notification_id,
            user_id=user_id,
            message=message,
            link=link,
            is_read=False,
            created_at=created_at,
        )

    def list_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        conn = get_db_connection(self.db_path, self.timeout)
        try:
            cursor = conn.cursor()
            if unread_only:
                cursor.execute("""
                    SELECT * FROM notifications
                    WHERE user_id = ? AND is_read = 0
                    ORDER BY created_at DESC, id DESC
                """, (user_id,))
            else:
                cursor.execute("""
                    SELECT * FROM notifications
                    WHERE user_id = ?
                    ORDER BY created_at DESC, id DESC
                """, (user_id,))
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageFailure(f"Could not read notifications for {user_id}: {e}") from e
        finally:
            conn.close()
        return [
            Notification(
                id=row["id"],
                user_id=row["user_id"],
                message=row["message"],
                link=row["link"],
                is_read=bool(row["is_read"]),
                created_at=_from_ts(row["created_at"]),
            )
            for row in rows
        ]

    def mark_read(self, notification_id: int, user_id: str) -> bool:
        """
        Mark one notification read. Only the owner can do this.
        Return True if a row was updated.
        """
        conn = get_db_connection(self.db_path, self.timeout)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE notifications SET is_read = 1
                WHERE id = ? AND user_id = ?
            """, (notification_id, user_id))
            updated = cursor.rowcount == 1
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(f"Could not update notification {notification_id}: {e}") from e
        finally:
            conn.close()
        return updated
