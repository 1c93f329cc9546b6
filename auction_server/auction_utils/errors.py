# Failure taxonomy for the auction core. Each error knows the HTTP status the
# API layer answers with; the message is what the caller gets to see.

class AuctionError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        return type(self).__name__


class NotFound(AuctionError):
    status_code = 404


class Forbidden(AuctionError):
    status_code = 403


class InvalidBid(AuctionError):
    status_code = 400


class AuctionClosed(AuctionError):
    status_code = 400


class InvalidListing(AuctionError):
    status_code = 400


class ConflictFailure(AuctionError):
    """Lost a compare-and-update race. Re-read before trying again."""
    status_code = 409


class StorageFailure(AuctionError):
    status_code = 500
