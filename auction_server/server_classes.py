from pydantic import BaseModel
from datetime import datetime

class CreateAuctionRequest(BaseModel):
    seller_uuid: str
    seller_nickname: str
    title: str
    description: str
    file_url: str
    file_type: str  # "image" or "document"
    start_price: int = 0
    end_date: datetime

class BidRequest(BaseModel):
    bidder_uuid: str
    bidder_nickname: str
    price: int

class ReadNotificationRequest(BaseModel):
    user_uuid: str