"""
Auction state machine and the direct-sale offer path.

States of a painting's auction: no auction -> active -> ended. Expiry is
derived from ``auction_end_time`` on every access; an auction that is past its
end time but still flagged active is treated as closed and closed on the spot.
"""
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import select, update

import auction_chat
import errors
import realtime
from ledger import AuctionBidPolicy, FloorPricePolicy, OfferLedger, parse_amount
from models import db, isoformat, utcnow, Order, Painting

logger = logging.getLogger(__name__)

offer_ledger = OfferLedger(FloorPricePolicy())

# Durations are hours, rounded to 0.01h (36 seconds).
MAX_AUCTION_HOURS = 24 * 30


def auction_ledger():
    return OfferLedger(AuctionBidPolicy(current_app.config['ENFORCE_BID_INCREMENT']))


def get_painting(painting_id):
    painting = db.session.get(Painting, painting_id)
    if painting is None:
        raise errors.NotFoundError("Painting not found")
    return painting


def minimum_next_bid(painting):
    if not painting.auction_current_bid:
        return painting.auction_starting_price
    return painting.auction_current_bid + (painting.auction_bid_increment or 0)


def auction_to_dict(painting):
    bids = auction_ledger().entries(painting)
    return {
        'isActive': painting.auction_is_active,
        'startTime': isoformat(painting.auction_start_time),
        'endTime': isoformat(painting.auction_end_time),
        'startingPrice': painting.auction_starting_price,
        'bidIncrement': painting.auction_bid_increment,
        'currentBid': painting.auction_current_bid,
        'minimumNextBid': minimum_next_bid(painting),
        'participantCount': painting.auction_participant_count,
        'bidCount': len(bids),
        'bids': [b.to_dict() for b in bids],
        'winner': painting.auction_winner_id,
        'winnerName': painting.winner.name if painting.winner else None,
    }


def start_auction(principal, painting_id, duration, starting_price=None, bid_increment=None):
    duration = parse_amount(duration, 'duration', maximum=MAX_AUCTION_HOURS)
    painting = get_painting(painting_id)
    if painting.artist_id != principal.user_id:
        raise errors.ForbiddenError("You can only auction your own paintings")
    if painting.status != 'available':
        raise errors.ConflictError("Painting is not available for auction")

    if starting_price is None:
        starting_price = painting.price
    else:
        starting_price = parse_amount(starting_price, 'starting price', allow_zero=True)
    if bid_increment is None:
        bid_increment = current_app.config['DEFAULT_BID_INCREMENT']
    else:
        bid_increment = parse_amount(bid_increment, 'bid increment')

    now = utcnow()
    end_time = now + timedelta(hours=duration)
    stmt = (
        update(Painting)
        .where(Painting.id == painting.id, Painting.status == 'available')
        .values(sale_type='auction', status='in_auction',
                auction_round=Painting.auction_round + 1,
                auction_is_active=True, auction_start_time=now, auction_end_time=end_time,
                auction_starting_price=starting_price, auction_bid_increment=bid_increment,
                auction_current_bid=0, auction_participant_count=0, auction_winner_id=None)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount != 1:
        db.session.rollback()
        raise errors.ConflictError("Painting is not available for auction")

    # Same transaction as the painting update: both land or neither does.
    announcement = (f"Auction started! Starting price: ${starting_price:g}. "
                    f"Auction ends at {end_time.strftime('%Y-%m-%d %H:%M')} UTC.")
    chat = auction_chat.open_room(painting, principal.user_id, principal.name, announcement)
    db.session.commit()
    logger.info("Auction started on painting %s by %s until %s", painting.id, principal.user_id, end_time)

    realtime.publish(None, 'auction_started', {
        'paintingId': painting.id,
        'painting': painting.to_dict(),
        'auction': auction_to_dict(painting),
        'auctionChatId': chat.id,
    })
    return painting, chat


def join_auction(principal, painting_id):
    painting = get_painting(painting_id)
    _require_running_auction(painting)

    chat = auction_chat.get_room(painting.id)
    auction_chat.add_participant(chat, principal.user_id, principal.name)
    auction_chat.add_message(chat, principal.user_id, auction_chat.SYSTEM_SENDER,
                             f"{principal.name} joined the auction", 'system')
    db.session.commit()

    realtime.publish(realtime.auction_room(painting.id), 'user_joined', {
        'paintingId': painting.id,
        'userId': principal.user_id,
        'username': principal.name,
        'message': f"{principal.name} joined the auction",
    })
    return painting, chat


def place_bid(principal, painting_id, amount):
    amount = parse_amount(amount)
    painting = get_painting(painting_id)
    try:
        bid = auction_ledger().admit(painting, principal.user_id, principal.name, amount)
    except errors.AuctionExpiredError:
        _close_expired(painting)
        raise
    except errors.ValidationError as e:
        logger.debug("Rejected bid of %s on painting %s: %s", amount, painting_id, e.message)
        raise

    chat = auction_chat.find_room(painting.id)
    if chat is not None:
        auction_chat.add_message(chat, principal.user_id, principal.name,
                                 f"Placed bid: ${amount:g}", 'bid_placed', amount)
    db.session.commit()
    logger.info("Bid %s of %s admitted on painting %s", bid.id, amount, painting.id)

    realtime.publish(realtime.auction_room(painting.id), 'new_bid', {
        'paintingId': painting.id,
        'bidId': bid.id,
        'bidder': principal.name,
        'bidderId': principal.user_id,
        'amount': amount,
        'timestamp': isoformat(bid.timestamp),
        'currentBid': painting.auction_current_bid,
        'participantCount': painting.auction_participant_count,
    })
    return painting, bid


def end_auction(principal, painting_id):
    painting = get_painting(painting_id)
    if not painting.has_auction or not painting.auction_is_active:
        raise errors.ConflictError("No active auction to end")
    # Anyone may trigger the close of an overdue auction; only the owner may end it early.
    if painting.artist_id != principal.user_id and not painting.is_auction_expired():
        raise errors.ForbiddenError("You can only end your own auctions")

    summary = _close(painting, principal.user_id)
    db.session.commit()
    _announce_end(painting, summary)
    return summary


def get_auction_details(painting_id):
    painting = get_painting(painting_id)
    if not painting.has_auction:
        raise errors.NotFoundError("No auction found for this painting")
    now = utcnow()
    if painting.is_auction_expired(now):
        _close_expired(painting)
    chat = auction_chat.find_room(painting.id)
    return {
        'auction': auction_to_dict(painting),
        'timeRemaining': painting.time_remaining(now),
        'isExpired': now >= painting.auction_end_time,
        'auctionChatId': chat.id if chat else None,
        'painting': painting.to_dict(),
    }


def list_active_auctions():
    now = utcnow()
    stmt = select(Painting).where(Painting.status == 'in_auction',
                                  Painting.auction_is_active.is_(True),
                                  Painting.auction_end_time > now)\
        .order_by(Painting.auction_end_time)
    paintings = db.session.execute(stmt).scalars().all()
    return [dict(p.to_dict(), currentBid=p.auction_current_bid,
                 participantCount=p.auction_participant_count,
                 endTime=isoformat(p.auction_end_time),
                 timeRemaining=p.time_remaining(now)) for p in paintings]


def sweep_expired_auctions(now=None):
    """Close every auction past its end time. Returns how many were closed."""
    now = now or utcnow()
    stmt = select(Painting).where(Painting.auction_is_active.is_(True),
                                  Painting.auction_end_time <= now)
    closed = 0
    for painting in db.session.execute(stmt).scalars().all():
        if _close_expired(painting) is not None:
            closed += 1
    if closed:
        logger.info("Closed %d expired auction(s)", closed)
    return closed


def _require_running_auction(painting):
    if not painting.has_auction or not painting.auction_is_active:
        raise errors.ConflictError("No active auction for this painting")
    if painting.is_auction_expired():
        _close_expired(painting)
        raise errors.AuctionExpiredError("Auction has ended")


def _close(painting, actor_id):
    """Move an active auction to ended. Does not commit."""
    ledger = auction_ledger()
    winning_bid = ledger.last_entry(painting)
    order = None
    if winning_bid is not None:
        ledger.resolve(painting, winning_bid)
        order = Order(painting_id=painting.id, buyer_id=winning_bid.bidder_id,
                      artist_id=painting.artist_id, bid_id=winning_bid.id, price=winning_bid.amount)
        db.session.add(order)
    else:
        stmt = (
            update(Painting)
            .where(Painting.id == painting.id, Painting.auction_is_active.is_(True))
            .values(auction_is_active=False, status='available')
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount != 1:
            db.session.rollback()
            raise errors.ConflictError("Auction has already ended")

    chat = auction_chat.find_room(painting.id)
    if chat is not None:
        if winning_bid is not None:
            content = (f"Auction ended! Winner: {winning_bid.bidder_name} "
                       f"with bid ${winning_bid.amount:g}")
        else:
            content = "Auction ended with no bids."
        auction_chat.add_message(chat, actor_id, auction_chat.SYSTEM_SENDER, content, 'auction_ended')
        chat.is_active = False
    db.session.flush()

    return {
        'winner': winning_bid.bidder_id if winning_bid else None,
        'winnerName': winning_bid.bidder_name if winning_bid else None,
        'finalBid': winning_bid.amount if winning_bid else 0,
        'orderId': order.id if order else None,
    }


def _close_expired(painting):
    try:
        summary = _close(painting, None)
    except errors.ConflictError:
        # Somebody else closed it first.
        return None
    db.session.commit()
    logger.info("Closed expired auction on painting %s", painting.id)
    _announce_end(painting, summary)
    return summary


def _announce_end(painting, summary):
    logger.info("Auction on painting %s ended, winner=%s final=%s",
                painting.id, summary['winner'], summary['finalBid'])
    realtime.publish(realtime.auction_room(painting.id), 'auction_ended', dict(
        summary, paintingId=painting.id, painting={'id': painting.id, 'title': painting.title}))


# Direct-sale offers

def submit_offer(principal, painting_id, amount):
    painting = get_painting(painting_id)
    if painting.sale_type == 'auction' and painting.auction_is_active:
        return place_bid(principal, painting_id, amount)

    amount = parse_amount(amount)
    bid = offer_ledger.admit(painting, principal.user_id, principal.name, amount)
    db.session.commit()
    logger.info("Offer %s of %s submitted on painting %s", bid.id, amount, painting.id)

    realtime.publish(realtime.user_room(painting.artist_id), 'new_bid', {
        'paintingId': painting.id,
        'bidId': bid.id,
        'bidder': principal.name,
        'bidderId': principal.user_id,
        'amount': amount,
        'timestamp': isoformat(bid.timestamp),
        'currentBid': painting.auction_current_bid,
        'participantCount': painting.auction_participant_count,
    })
    return painting, bid


def list_offers(principal, painting_id):
    painting = get_painting(painting_id)
    if painting.artist_id != principal.user_id:
        raise errors.ForbiddenError("Only the artist can view bids for this painting")
    return offer_ledger.entries(painting)


def accept_offer(principal, painting_id, bid_id):
    painting = get_painting(painting_id)
    if painting.artist_id != principal.user_id:
        raise errors.ForbiddenError("Only the artist can accept a bid")
    if painting.status == 'sold':
        raise errors.ConflictError("Painting has already been sold")
    if painting.sale_type != 'direct_sale':
        raise errors.ConflictError("Auction bids are settled by ending the auction")

    bid = offer_ledger.get_entry(painting, bid_id)
    offer_ledger.resolve(painting, bid)
    order = Order(painting_id=painting.id, buyer_id=bid.bidder_id, artist_id=painting.artist_id,
                  bid_id=bid.id, price=bid.amount)
    db.session.add(order)
    db.session.commit()
    logger.info("Offer %s accepted on painting %s, order %s", bid.id, painting.id, order.id)

    realtime.publish(realtime.user_room(bid.bidder_id), 'offer_accepted', {
        'paintingId': painting.id,
        'bidId': bid.id,
        'amount': bid.amount,
        'orderId': order.id,
    })
    return painting, bid, order


def list_orders(principal):
    column = Order.artist_id if principal.role == 'artist' else Order.buyer_id
    stmt = select(Order).where(column == principal.user_id).order_by(Order.id.desc())
    return db.session.execute(stmt).scalars().all()
