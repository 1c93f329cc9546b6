from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from auction_logs.loggers import auction_logger, bid_logger
from auction_server.auction_utils.auction import (
    AuctionItem, AuctionChanges, AuctionDetail, AuditLogEntry, Bid, BidResult,
    CloseResult, FILE_KINDS
)
from auction_server.auction_utils.base import (
    AuctionRepository, AuditLog, NotificationSink, ReputationStore
)
from auction_server.auction_utils.broadcaster import RealtimeBroadcaster
from auction_server.auction_utils.errors import (
    AuctionClosed, ConflictFailure, Forbidden, InvalidBid, InvalidListing,
    StorageFailure
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuctionEngine:
    # AuctionEngine owns the bidding rules and the close transition. It keeps
    # no auction state of its own: every decision is made against a fresh read
    # and committed through the repository's conditional writes, so any number
    # of engine instances can share one database.
    def __init__(
        self,
        repository: AuctionRepository,
        reputation: ReputationStore,
        audit_log: AuditLog,
        notifications: NotificationSink,
        broadcaster: RealtimeBroadcaster,
        anti_snipe_seconds: int = 60,
        bid_reward: int = 5,
        listing_reward: int = 10,
        max_bid_attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.reputation = reputation
        self.audit_log = audit_log
        self.notifications = notifications
        self.broadcaster = broadcaster
        self.anti_snipe_window = timedelta(seconds=anti_snipe_seconds)
        self.bid_reward = bid_reward
        self.listing_reward = listing_reward
        self.max_bid_attempts = max(1, max_bid_attempts)
        self.clock = clock

    async def create_auction(
        self,
        seller_id: str,
        seller_nickname: str,
        title: str,
        description: str,
        file_url: str,
        file_type: str,
        start_price: int,
        end_date: datetime,
    ) -> AuctionItem:
        """List a new item. The seller's reputation is snapshotted onto the
        listing before the listing reward is paid out."""
        now = self.clock()

        #log code
        auction_logger.info(
            "auction_create_attempt",
            seller_id=seller_id,
            title=title,
            start_price=start_price,
            end_date=end_date.isoformat()
        )

        if start_price < 0:
            raise InvalidListing("Start price cannot be negative")
        if file_type not in FILE_KINDS:
            raise InvalidListing(f"File type must be one of {', '.join(FILE_KINDS)}")
        if end_date <= now:
            raise InvalidListing("End date must be in the future")

        self.reputation.ensure_user(seller_id, seller_nickname)
        snapshot = self.reputation.get(seller_id)

        item = self.repository.create(AuctionItem(
            id=None,
            title=title,
            description=description,
            file_url=file_url,
            file_type=file_type,
            start_price=start_price,
            current_price=start_price,
            end_date=end_date,
            seller_id=seller_id,
            seller_nickname=seller_nickname,
            seller_reputation=snapshot,
            created_at=now,
        ))

        self.reputation.increment(seller_id, self.listing_reward)

        #log code
        auction_logger.info(
            "auction_created",
            auction_id=item.id,
            seller_id=seller_id,
            seller_reputation=snapshot,
            start_price=start_price,
            end_date=item.end_date.isoformat()
        )
        return item

    async def submit_bid(
        self,
        auction_id: str,
        bidder_id: str,
        bidder_nickname: str,
        price: int,
    ) -> BidResult:
        """
        Validate and apply one bid. Checks run in order against a fresh read:
        NotFound, Forbidden (own auction), InvalidBid (not above the current
        price), AuctionClosed (ended or past the deadline). A lost write race
        re-runs the checks; too many lost races read as AuctionClosed.
        """

        #log code
        auction_logger.info(
            "bid_attempt",
            auction_id=auction_id,
            bidder_id=bidder_id,
            price=price
        )

        for attempt in range(1, self.max_bid_attempts + 1):
            item = self.repository.get(auction_id)
            now = self.clock()

            if bidder_id == item.seller_id:
                #log code
                auction_logger.warning(
                    "bid_failed_self_bid",
                    auction_id=auction_id,
                    bidder_id=bidder_id
                )
                raise Forbidden("Cannot bid on your own auction")

            if price <= item.current_price:
                #log code
                auction_logger.warning(
                    "bid_failed_too_low",
                    auction_id=auction_id,
                    bidder_id=bidder_id,
                    price=price,
                    current_price=item.current_price
                )
                raise InvalidBid(f"Bid must be higher than current price of {item.current_price}")

            if not item.is_active or now >= item.end_date:
                #log code
                auction_logger.warning(
                    "bid_failed_closed",
                    auction_id=auction_id,
                    bidder_id=bidder_id,
                    status=item.status
                )
                if item.is_active:
                    await self.check_and_close_if_expired(auction_id)
                raise AuctionClosed("Auction has ended")

            new_end_date = self._extended_end_date(item.end_date, now)
            changes = AuctionChanges(
                current_price=price,
                highest_bidder_id=bidder_id,
                highest_bidder_nickname=bidder_nickname,
                end_date=new_end_date,
            )
            bid = Bid(
                auction_id=auction_id,
                bidder_id=bidder_id,
                bidder_nickname=bidder_nickname,
                price=price,
                created_at=now,
            )
            try:
                updated = self.repository.compare_and_update(
                    auction_id, item.current_price, changes, bid=bid, now=now
                )
            except ConflictFailure:
                #log code
                auction_logger.warning(
                    "bid_conflict",
                    auction_id=auction_id,
                    bidder_id=bidder_id,
                    price=price,
                    expected_price=item.current_price,
                    attempt=attempt
                )
                continue

            extended = updated.end_date > item.end_date
            reputation = self._after_accepted_bid(bid)

            #log code
            auction_logger.info(
                "bid_success",
                auction_id=auction_id,
                bidder_id=bidder_id,
                price=price,
                end_date=updated.end_date.isoformat(),
                extended=extended
            )
            if extended:
                #log code
                auction_logger.info(
                    "bid_deadline_extended",
                    auction_id=auction_id,
                    previous_end_date=item.end_date.isoformat(),
                    end_date=updated.end_date.isoformat()
                )

            await self.broadcaster.broadcast_bid_update(auction_id, {
                "newPrice": updated.current_price,
                "bidderNickname": bidder_nickname,
                "bidderReputation": reputation,
                "newEndDate": updated.end_date.isoformat(),
            })

            return BidResult(
                new_price=updated.current_price,
                new_end_date=updated.end_date,
                bidder_reputation=reputation,
                extended=extended,
            )

        #log code
        auction_logger.warning(
            "bid_failed_contention",
            auction_id=auction_id,
            bidder_id=bidder_id,
            price=price,
            attempts=self.max_bid_attempts
        )
        raise AuctionClosed("Auction is busy, please reload and bid again")

    def _extended_end_date(self, end_date: datetime, now: datetime) -> datetime:
        # A bid inside the last window resets the countdown to a full window
        # from now. Resets never stack: each late bid gets now + window.
        if end_date - now < self.anti_snipe_window:
            return now + self.anti_snipe_window
        return end_date

    def _after_accepted_bid(self, bid: Bid) -> int:
        """Audit and reward an accepted bid. The bid is already committed, so
        failures here are logged rather than bounced back to the bidder."""
        bid_logger.info(
            "bid_accepted",
            auction_id=bid.auction_id,
            bid_id=bid.id,
            bidder_id=bid.bidder_id,
            bidder_nickname=bid.bidder_nickname,
            price=bid.price,
            ts=bid.created_at.isoformat()
        )

        try:
            self.audit_log.append(AuditLogEntry(
                auction_id=bid.auction_id,
                bidder_id=bid.bidder_id,
                bidder_nickname=bid.bidder_nickname,
                price=bid.price,
                timestamp=bid.created_at,
            ))
        except StorageFailure as e:
            #log code
            auction_logger.error(
                "bid_audit_append_failed",
                auction_id=bid.auction_id,
                bid_id=bid.id,
                error=str(e)
            )

        try:
            self.reputation.ensure_user(bid.bidder_id, bid.bidder_nickname)
            return self.reputation.increment(bid.bidder_id, self.bid_reward)
        except StorageFailure as e:
            #log code
            auction_logger.error(
                "bid_reputation_reward_failed",
                auction_id=bid.auction_id,
                bidder_id=bid.bidder_id,
                error=str(e)
            )
            return 0

    async def check_and_close_if_expired(self, auction_id: str) -> CloseResult:
        """
        Close an active auction whose deadline has passed. Safe to call from
        anywhere, any number of times: only the caller whose status flip wins
        sends notifications and the auction:ended broadcast.
        """
        item = self.repository.get(auction_id)
        now = self.clock()

        if not item.is_active or not item.is_expired(now):
            return CloseResult(closed=False, was_transitioned=False, item=item)

        item, was_transitioned = self.repository.transition_to_ended(auction_id, now=now)
        if not was_transitioned:
            # someone else closed it between our read and our write
            return CloseResult(closed=True, was_transitioned=False, item=item)

        #log code
        auction_logger.info(
            "auction_ended",
            auction_id=auction_id,
            final_price=item.current_price,
            seller_id=item.seller_id,
            winner_id=item.highest_bidder_id
        )

        await self._settle(item)
        return CloseResult(closed=True, was_transitioned=True, item=item)

    async def _settle(self, item: AuctionItem):
        # The status flip is already committed and no later call can win it
        # again, so a failing notification is logged and the rest still runs.
        link = f"/auction/{item.id}"

        if item.highest_bidder_id:
            seller_message = (
                f"Your auction '{item.title}' has ended. "
                f"{item.highest_bidder_nickname} won with {item.current_price}."
            )
        else:
            seller_message = f"Your auction '{item.title}' has ended with no bids."
        self._notify(item, item.seller_id, seller_message, link)

        if item.highest_bidder_id is None:
            #log code
            auction_logger.info(
                "auction_ended_no_bids",
                auction_id=item.id,
                seller_id=item.seller_id
            )
            return

        self._notify(
            item,
            item.highest_bidder_id,
            f"You won the auction '{item.title}' for {item.current_price}.",
            link,
        )

        await self.broadcaster.broadcast_auction_ended(item.id, {
            "highestBidderId": item.highest_bidder_id,
            "highestBidderNickname": item.highest_bidder_nickname,
        })

    def _notify(self, item: AuctionItem, user_id: str, message: str, link: str):
        try:
            self.notifications.create(user_id, message, link)
        except StorageFailure as e:
            #log code
            auction_logger.error(
                "auction_notification_failed",
                auction_id=item.id,
                user_id=user_id,
                notification=message,
                error=str(e)
            )

    async def get_auction_detail(self, auction_id: str, viewer_id: Optional[str] = None) -> AuctionDetail:
        """Auction page data. Viewing an auction also closes it if it is overdue."""
        item = (await self.check_and_close_if_expired(auction_id)).item
        can_bid = bool(viewer_id) and viewer_id != item.seller_id and item.is_active
        return AuctionDetail(
            item=item,
            can_bid=can_bid,
            bids=self.repository.list_bids(auction_id),
        )

    def list_auctions(self, status: Optional[str] = None) -> list[AuctionItem]:
        return self.repository.list_items(status)

    async def sweep_expired(self) -> int:
        """Close every overdue auction. Returns how many this call closed."""
        closed = 0
        for item in self.repository.list_expired(self.clock()):
            result = await self.check_and_close_if_expired(item.id)
            if result.was_transitioned:
                closed += 1

        if closed:
            #log code
            auction_logger.info("auction_sweep_closed", count=closed)
        return closed
