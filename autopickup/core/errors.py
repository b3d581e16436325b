from __future__ import annotations


class PickupError(Exception):
    """Base for every rejection the redemption and issuance services report."""

    code = "internal"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, field: str | None = None):
        self.message = message or self.default_message
        self.field = field
        super().__init__(self.message)


class InvalidFormat(PickupError):
    code = "invalid_format"
    status_code = 400
    default_message = "Invalid input format"


class NotFound(PickupError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class Expired(PickupError):
    code = "expired"
    status_code = 400
    default_message = "Expired"


class QuotaExhausted(PickupError):
    code = "quota_exhausted"
    status_code = 400
    default_message = "Usage limit reached"


class AlreadyRedeemed(PickupError):
    code = "already_redeemed"
    status_code = 400
    default_message = "Already redeemed"


class DuplicateRedemption(AlreadyRedeemed):
    # raised by the ledger when the (code, redeemer) unique constraint fires
    code = "already_redeemed"


class QuotaCeilingReached(PickupError):
    code = "quota_ceiling_reached"
    status_code = 400
    default_message = "Code limit for this product reached"


class InsufficientStock(PickupError):
    code = "insufficient_stock"
    status_code = 400
    default_message = "Insufficient stock"


class RateLimited(PickupError):
    code = "rate_limited"
    status_code = 429
    default_message = "Too many pickup attempts, please try again later"

    def __init__(self, message: str | None = None, *, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after


class Internal(PickupError):
    pass


class InvalidState(PickupError):
    code = "invalid_state"
    status_code = 409
    default_message = "Operation not allowed in the current state"
