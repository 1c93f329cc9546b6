import os
import tempfile

# keep the always-on bid log out of the working tree
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="auction-logs-"))
os.environ["ENV"] = "test"

from datetime import datetime, timedelta, timezone

import pytest

from auction_server.auction_utils.broadcaster import RealtimeBroadcaster
from auction_server.auction_utils.engine import AuctionEngine
from auction_server.utils.db_access import (
    init_db,
    SQLiteAuctionRepository,
    SQLiteReputationStore,
    SQLiteAuditLog,
    SQLiteNotificationSink,
)

T0 = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingConnection:
    """Stands in for a WebSocket: remembers everything sent to it."""

    def __init__(self, name="conn", fail=False):
        self.name = name
        self.fail = fail
        self.sent = []

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def of_type(self, msg_type):
        return [m for m in self.sent if m["type"] == msg_type]


class Stores:
    def __init__(self, tmp_path):
        self.auction_db = tmp_path / "auctions.db"
        self.accounts_db = tmp_path / "accounts.db"
        init_db(self.auction_db, self.accounts_db)
        self.repository = SQLiteAuctionRepository(self.auction_db)
        self.reputation = SQLiteReputationStore(self.accounts_db)
        self.audit_log = SQLiteAuditLog(self.accounts_db)
        self.notifications = SQLiteNotificationSink(self.auction_db)


@pytest.fixture
def stores(tmp_path):
    return Stores(tmp_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broadcaster():
    return RealtimeBroadcaster()


def make_engine(stores, broadcaster, clock, **overrides):
    params = dict(
        repository=stores.repository,
        reputation=stores.reputation,
        audit_log=stores.audit_log,
        notifications=stores.notifications,
        broadcaster=broadcaster,
        clock=clock,
    )
    params.update(overrides)
    return AuctionEngine(**params)


@pytest.fixture
def engine(stores, broadcaster, clock):
    return make_engine(stores, broadcaster, clock)


async def list_item(engine, seller="seller-1", start_price=1000, ends_in=timedelta(hours=1), title="Calculus notes"):
    return await engine.create_auction(
        seller_id=seller,
        seller_nickname="quiet-otter",
        title=title,
        description="Full semester of lecture notes",
        file_url="/uploads/notes.pdf",
        file_type="document",
        start_price=start_price,
        end_date=engine.clock() + ends_in,
    )
