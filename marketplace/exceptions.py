"""Error types shared by the payments and payouts apps.

Every error carries a user-facing ``message`` and the HTTP status the
JSON views answer with.  None of them should ever escape as a 500.
"""


class MarketplaceError(Exception):
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MarketplaceError):
    default_message = "Invalid input"


class NotFound(MarketplaceError):
    status_code = 404
    default_message = "Not found"


class InvalidSignature(MarketplaceError):
    default_message = "Invalid signature"


class InsufficientBalance(MarketplaceError):
    default_message = "Insufficient balance"


class BelowMinimumThreshold(MarketplaceError):
    default_message = "Amount is below the minimum payout"


class AlreadyResolved(MarketplaceError):
    status_code = 409
    default_message = "Request has already been resolved"


class MissingReference(MarketplaceError):
    default_message = "Payment reference is required"
