from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import timezone
from typing import Optional
import asyncio

#logging stuff
from auction_logs.loggers import server_logger, auction_logger, realtime_logger
from auction_logs.endpoints import router as logs_router
from auction_logs.middleware import RequestLoggingMiddleware

from auction_server.config import load_settings
from auction_server.server_classes import CreateAuctionRequest, BidRequest, ReadNotificationRequest
from auction_server.auction_utils.auction import AUCTION_STATUSES
from auction_server.auction_utils.broadcaster import RealtimeBroadcaster
from auction_server.auction_utils.engine import AuctionEngine
from auction_server.auction_utils.errors import AuctionError

# import our DB access layer
from auction_server.utils.db_access import (
    init_db,
    SQLiteAuctionRepository,
    SQLiteReputationStore,
    SQLiteAuditLog,
    SQLiteNotificationSink,
)

settings = load_settings()

repository = SQLiteAuctionRepository(settings.auction_db_path, settings.db_timeout_seconds)
reputation_store = SQLiteReputationStore(settings.accounts_db_path, settings.db_timeout_seconds)
audit_log = SQLiteAuditLog(settings.accounts_db_path, settings.db_timeout_seconds)
notification_sink = SQLiteNotificationSink(settings.auction_db_path, settings.db_timeout_seconds)
broadcaster = RealtimeBroadcaster()

engine = AuctionEngine(
    repository=repository,
    reputation=reputation_store,
    audit_log=audit_log,
    notifications=notification_sink,
    broadcaster=broadcaster,
    anti_snipe_seconds=settings.anti_snipe_seconds,
    bid_reward=settings.bid_reward,
    listing_reward=settings.listing_reward,
    max_bid_attempts=settings.max_bid_attempts,
)

app = FastAPI(title="Campus Auction")
app.include_router(logs_router)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware, logger=server_logger)

sweep_task: Optional[asyncio.Task] = None


@app.exception_handler(AuctionError)
async def auction_error_handler(request: Request, exc: AuctionError):
    log = server_logger.error if exc.status_code >= 500 else server_logger.warning
    log(
        "auction_error",
        path=request.url.path,
        code=exc.code,
        error=exc.message
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})


async def sweep_expired_auctions(interval: float):
    """Background hygiene: close overdue auctions nobody has looked at."""
    while True:
        await asyncio.sleep(interval)
        await sweep_once()


async def sweep_once() -> int:
    # one failed pass must not end the loop; the next pass retries
    try:
        return await engine.sweep_expired()
    except Exception as e:
        #log code
        auction_logger.error("auction_sweep_failed", error=str(e), error_type=type(e).__name__)
        return 0


# startup functions
@app.on_event("startup")
async def startup_event():
    global sweep_task
    init_db(settings.auction_db_path, settings.accounts_db_path, settings.db_timeout_seconds)

    #log code
    server_logger.info(
        "startup_complete",
        env=settings.env,
        log_level=settings.log_level,
        auction_db=str(settings.auction_db_path),
        accounts_db=str(settings.accounts_db_path),
        sweep_interval=settings.sweep_interval_seconds
    )

    if settings.sweep_interval_seconds > 0:
        sweep_task = asyncio.create_task(sweep_expired_auctions(settings.sweep_interval_seconds))


@app.on_event("shutdown")
async def shutdown_event():
    global sweep_task
    if sweep_task and not sweep_task.done():
        sweep_task.cancel()
    sweep_task = None


@app.get("/")
async def read_root():
    return {"service": "campus-auction", "status": "ok"}


@app.post("/auction", status_code=201)
async def create_auction(req: CreateAuctionRequest):
    """List an item for auction"""
    end_date = req.end_date
    if end_date.tzinfo is None:
        end_date = end_date.replace(tzinfo=timezone.utc)

    item = await engine.create_auction(
        seller_id=req.seller_uuid,
        seller_nickname=req.seller_nickname,
        title=req.title,
        description=req.description,
        file_url=req.file_url,
        file_type=req.file_type,
        start_price=req.start_price,
        end_date=end_date,
    )
    return item.to_dict()


@app.get("/auction")
async def list_auctions(status: Optional[str] = None):
    if status is not None and status not in AUCTION_STATUSES:
        return JSONResponse(status_code=400, content={"error": f"Unknown status '{status}'"})

    items = engine.list_auctions(status)
    return {"auctions": [item.to_dict() for item in items], "count": len(items)}


@app.get("/auction/rooms")
async def get_auction_rooms():
    """REST endpoint to get live room occupancy"""
    return {
        "rooms": broadcaster.room_status()
    }


@app.get("/auction/{auction_id}")
async def get_auction(auction_id: str, viewer_uuid: Optional[str] = None):
    """Auction page. Looking at an overdue auction closes it."""
    detail = await engine.get_auction_detail(auction_id, viewer_uuid)
    return {
        **detail.item.to_dict(),
        "can_bid": detail.can_bid,
        "bids": [bid.to_dict() for bid in detail.bids],
    }


@app.post("/auction/{auction_id}/bid")
async def place_bid(auction_id: str, req: BidRequest):
    result = await engine.submit_bid(
        auction_id=auction_id,
        bidder_id=req.bidder_uuid,
        bidder_nickname=req.bidder_nickname,
        price=req.price,
    )
    return {
        "newPrice": result.new_price,
        "newEndDate": result.new_end_date.isoformat(),
    }


@app.post("/auction/{auction_id}/try-end")
async def try_end_auction(auction_id: str):
    result = await engine.check_and_close_if_expired(auction_id)
    return {"closed": result.closed, "status": result.item.status}


@app.get("/auction/{auction_id}/audit")
async def get_auction_audit(auction_id: str):
    """Accepted-bid audit trail, for dispute resolution"""
    repository.get(auction_id)
    entries = audit_log.for_auction(auction_id)
    return {"entries": [entry.to_dict() for entry in entries], "count": len(entries)}


@app.get("/users/{user_uuid}/reputation")
async def get_reputation(user_uuid: str):
    return {"user_id": user_uuid, "reputation": reputation_store.get(user_uuid)}


@app.get("/notifications/{user_uuid}")
async def list_notifications(user_uuid: str, unread_only: bool = False):
    notifications = notification_sink.list_for_user(user_uuid, unread_only=unread_only)
    return {
        "notifications": [n.to_dict() for n in notifications],
        "count": len(notifications)
    }


@app.post("/notifications/{notification_id}/read")
async def read_notification(notification_id: int, req: ReadNotificationRequest):
    updated = notification_sink.mark_read(notification_id, req.user_uuid)
    if not updated:
        return JSONResponse(status_code=404, content={"error": "Notification not found"})
    return {"success": True}


@app.websocket("/ws/auction")
async def websocket_auction(
    websocket: WebSocket,
    user_uuid: str,
    nickname: str = ""
):
    """WebSocket endpoint for live auction pages"""
    await websocket.accept()

    #log code
    realtime_logger.info(
        "ws_connected",
        user_uuid=user_uuid
    )

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                await websocket.send_json({"type": "error", "error": "Messages must be JSON objects"})
                continue
            msg_type = data.get("type")

            try:
                if msg_type == "join:room":
                    auction_id = str(data.get("auctionId", ""))
                    # unknown auctions raise NotFound before anyone joins
                    repository.get(auction_id)
                    await broadcaster.join(websocket, auction_id)

                elif msg_type == "chat:send":
                    auction_id = broadcaster.room_of(websocket)
                    if auction_id is None:
                        await websocket.send_json({"type": "error", "error": "Join a room first"})
                        continue

                    #log code
                    realtime_logger.debug(
                        "chat_message",
                        auction_id=auction_id,
                        user_uuid=user_uuid
                    )
                    await broadcaster.broadcast_chat(auction_id, {
                        "nickname": data.get("nickname") or nickname,
                        "msg": data.get("msg", ""),
                    })

                elif msg_type == "auction:try_end":
                    auction_id = str(data.get("auctionId") or broadcaster.room_of(websocket) or "")
                    await engine.check_and_close_if_expired(auction_id)

                elif msg_type == "ping":
                    await websocket.send_json({"type": "pong"})

                else:
                    await websocket.send_json({"type": "error", "error": f"Unknown message type: {msg_type}"})

            except AuctionError as e:
                await websocket.send_json({"type": "error", "error": e.message, "code": e.code})

    except WebSocketDisconnect:

        #log code
        realtime_logger.info(
            "ws_disconnected",
            user_uuid=user_uuid
        )

        await broadcaster.leave(websocket)

    except Exception as e:

        #log code
        realtime_logger.error(
            "ws_error",
            user_uuid=user_uuid,
            error=str(e)
        )

        await broadcaster.leave(websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
