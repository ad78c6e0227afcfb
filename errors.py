# List of exceptions

class MarketplaceError(Exception):
    """Base class for marketplace exceptions."""
    status_code = 500
    code = 'error'

    def __init__(self, message=None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__

    def to_dict(self):
        return {'success': False, 'error': self.code, 'message': self.message}


class UnauthorizedError(MarketplaceError):
    """Missing or invalid credentials."""
    status_code = 401
    code = 'unauthorized'


class ForbiddenError(MarketplaceError):
    """Raised when the caller's role or ownership does not allow the action."""
    status_code = 403
    code = 'forbidden'


class NotFoundError(MarketplaceError):
    """Raised when an item, conversation, message or bid does not exist."""
    status_code = 404
    code = 'not_found'


class ConflictError(MarketplaceError):
    """Raised when an action is not allowed in the current state."""
    status_code = 400
    code = 'conflict'


class InvalidStateError(ConflictError):
    """Raised when a record is no longer in the state the action expects."""
    code = 'invalid_state'


class AuctionExpiredError(ConflictError):
    """Auction has ended."""
    code = 'auction_expired'


class ValidationError(MarketplaceError):
    """Raised when input data fails validation."""
    status_code = 400
    code = 'validation'


class BidTooLowError(ValidationError):
    """Bid is too low."""
    code = 'bid_too_low'
