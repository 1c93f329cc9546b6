# pretty print display stuff

def print_info(message: str):
    print(f"[INFO]: {message}")

def print_error(message: str, code: str = None):
    print(f"[ERROR{' ' + code if code else ''}]: {message}")

def print_border():
    print("=" * 40)
    print()

def print_startup_message():
    print_border()
    print("Welcome to the Campus Auction client!")
    print("Please select an option to continue:")
    print("1. Browse auctions")
    print("2. List an item")
    print("3. Open an auction room")
    print("4. Notifications")
    print("5. My reputation")
    print("6. Exit")

def print_auction_summary(auction: dict):
    print(f"[{auction.get('status', '?')}] {auction.get('title', 'Untitled')} "
          f"- current {auction.get('current_price', 0)} "
          f"- ends {auction.get('end_date', '?')} "
          f"- id {auction.get('id')}")

def print_bid_history(bids: list, limit: int = 5):
    if not bids:
        print("  no bids yet")
        return
    for bid in bids[:limit]:
        print(f"  {bid.get('price')} by {bid.get('bidder_nickname')} at {bid.get('created_at')}")
