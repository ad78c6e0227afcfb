"""
Ranked offer ledger shared by timed auctions and direct-sale offers.

The ledger of a painting is the append-only list of ``Bid`` rows for its
current ``auction_round``; ``auction_current_bid`` and
``auction_participant_count`` on the painting row are derived from it.

Admission is a single conditional UPDATE of the painting row guarded by the
policy's conditions (compare-and-swap on ``auction_current_bid``), followed by
the INSERT of the bid inside the same transaction. The row lock taken by the
UPDATE serialises concurrent bidders: a loser's UPDATE re-evaluates the guard
against the committed winner and matches nothing.

Ledger methods never commit. ``admit`` may roll back, so it has to be the
first write of its unit of work.
"""
import math

from sqlalchemy import case, distinct, func, select, update

import errors
from models import db, utcnow, Bid, Painting


# Largest value a Numeric(10, 2) money column holds.
MAX_AMOUNT = 99999999.99


def parse_amount(value, field='amount', allow_zero=False, maximum=MAX_AMOUNT):
    """Parse a request value into a positive float rounded to cents.

    The positivity check applies to the rounded value, so ``0.004`` is zero.
    """
    if isinstance(value, bool) or value is None or value == '':
        raise errors.ValidationError(f"{field.capitalize()} is required")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise errors.ValidationError(f"{field.capitalize()} must be a number")
    if math.isnan(amount) or math.isinf(amount):
        raise errors.ValidationError(f"{field.capitalize()} must be a number")
    if amount < 0:
        raise errors.ValidationError(f"{field.capitalize()} must be positive")
    amount = round(amount, 2)
    if amount == 0 and not allow_zero:
        raise errors.ValidationError(f"{field.capitalize()} must be positive")
    if amount > maximum:
        raise errors.ValidationError(f"{field.capitalize()} cannot exceed {maximum:,}")
    return amount


class AdmissionPolicy:
    """Decides which entries a painting's ledger accepts and how it is resolved."""

    def conditions(self, amount, now):
        raise NotImplementedError

    def new_best(self, amount):
        raise NotImplementedError

    def diagnose(self, painting, amount, now):
        """Raise the error explaining why ``amount`` is not admissible, if it isn't."""
        raise NotImplementedError

    def resolve_conditions(self):
        raise NotImplementedError


class AuctionBidPolicy(AdmissionPolicy):
    """Strict rules for a running timed auction.

    Every admitted bid is strictly higher than the previous one, so the last
    ledger entry is always the highest.
    """

    def __init__(self, enforce_increment=False):
        self.enforce_increment = enforce_increment

    def conditions(self, amount, now):
        conds = [
            Painting.status == 'in_auction',
            Painting.auction_is_active.is_(True),
            Painting.auction_end_time > now,
            Painting.auction_current_bid < amount,
            Painting.auction_starting_price <= amount,
        ]
        if self.enforce_increment:
            conds.append((Painting.auction_current_bid == 0)
                         | (Painting.auction_current_bid + Painting.auction_bid_increment <= amount))
        return conds

    def new_best(self, amount):
        return amount

    def diagnose(self, painting, amount, now):
        if painting.status == 'sold':
            raise errors.ConflictError("Painting has already been sold")
        if not painting.has_auction or not painting.auction_is_active:
            raise errors.ConflictError("Auction is not active")
        if painting.is_auction_expired(now):
            raise errors.AuctionExpiredError("Auction has ended")
        current = painting.auction_current_bid or 0
        if amount <= current:
            raise errors.BidTooLowError(f"Bid must be higher than current bid of ${current:g}")
        if amount < painting.auction_starting_price:
            raise errors.BidTooLowError(f"Bid must be at least ${painting.auction_starting_price:g}")
        if self.enforce_increment and current > 0 and amount < current + painting.auction_bid_increment:
            raise errors.BidTooLowError(
                f"Bid must be at least ${current + painting.auction_bid_increment:g}")

    def resolve_conditions(self):
        return [Painting.auction_is_active.is_(True)]


class FloorPricePolicy(AdmissionPolicy):
    """Unstructured offers on a direct-sale painting: anything at or above the price."""

    def conditions(self, amount, now):
        return [
            Painting.status == 'available',
            Painting.sale_type == 'direct_sale',
            Painting.price <= amount,
        ]

    def new_best(self, amount):
        return case((Painting.auction_current_bid < amount, amount),
                    else_=Painting.auction_current_bid)

    def diagnose(self, painting, amount, now):
        if painting.status == 'sold':
            raise errors.ConflictError("Painting has already been sold")
        if painting.sale_type != 'direct_sale' or painting.status != 'available':
            raise errors.ConflictError("This painting is not open for offers")
        if amount < painting.price:
            raise errors.BidTooLowError(f"Offer must be at least ${painting.price:g}")

    def resolve_conditions(self):
        return [Painting.status == 'available', Painting.sale_type == 'direct_sale']


class OfferLedger:

    def __init__(self, policy):
        self.policy = policy

    def entries(self, painting):
        stmt = select(Bid).where(Bid.painting_id == painting.id,
                                 Bid.auction_round == painting.auction_round).order_by(Bid.id)
        return db.session.execute(stmt).scalars().all()

    def last_entry(self, painting):
        stmt = select(Bid).where(Bid.painting_id == painting.id,
                                 Bid.auction_round == painting.auction_round)\
            .order_by(Bid.id.desc()).limit(1)
        return db.session.execute(stmt).scalars().first()

    def get_entry(self, painting, bid_id):
        bid = db.session.get(Bid, bid_id)
        if bid is None or bid.painting_id != painting.id or bid.auction_round != painting.auction_round:
            raise errors.NotFoundError("Bid not found")
        return bid

    def admit(self, painting, bidder_id, bidder_name, amount, now=None):
        now = now or utcnow()
        self.policy.diagnose(painting, amount, now)

        stmt = (
            update(Painting)
            .where(Painting.id == painting.id, *self.policy.conditions(amount, now))
            .values(auction_current_bid=self.policy.new_best(amount))
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount != 1:
            # Lost the race; explain against the state that won.
            db.session.rollback()
            self.policy.diagnose(painting, amount, now)
            raise errors.ConflictError("Bid was superseded, please retry")

        bid = Bid(painting_id=painting.id, auction_round=painting.auction_round,
                  bidder_id=bidder_id, bidder_name=bidder_name, amount=amount, timestamp=now)
        db.session.add(bid)
        db.session.flush()

        participants = db.session.scalar(
            select(func.count(distinct(Bid.bidder_id)))
            .where(Bid.painting_id == painting.id, Bid.auction_round == painting.auction_round))
        db.session.execute(
            update(Painting).where(Painting.id == painting.id)
            .values(auction_participant_count=participants)
            .execution_options(synchronize_session=False))
        return bid

    def resolve(self, painting, bid):
        """Close the ledger in favour of ``bid``: the painting is sold to its bidder."""
        stmt = (
            update(Painting)
            .where(Painting.id == painting.id, *self.policy.resolve_conditions())
            .values(status='sold', auction_is_active=False,
                    auction_winner_id=bid.bidder_id, price=bid.amount)
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount != 1:
            db.session.rollback()
            raise errors.ConflictError("Painting is no longer open for this sale")
