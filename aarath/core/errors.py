"""Domain errors raised by the bidding coordinator.

Each error carries the HTTP status the API layer answers with, so the
exception handlers in ``main`` stay a single mapping.
"""


class AuctionError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class AuthError(AuctionError):
    """No authenticated identity where one is required."""
    status_code = 401


class ValidationError(AuctionError):
    status_code = 400


class BidTooLowError(ValidationError):
    def __init__(self, amount: float, minimum: float):
        super().__init__(f"Bid of {amount:,.2f} is below the minimum of {minimum:,.2f}")
        self.amount = amount
        self.minimum = minimum


class AuctionClosedError(ValidationError):
    pass


class NotFoundError(AuctionError):
    status_code = 404


class StoreError(AuctionError):
    """The real-time store rejected, dropped or gave up on an operation."""
    status_code = 503
