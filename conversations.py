"""
Buyer/artist conversations about a painting.

Read receipts are a side effect of listing: whoever lists a conversation's
messages has every message addressed to them marked read and their unread
counter zeroed.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

import errors
import realtime
from auctions import get_painting
from ledger import parse_amount
from models import db, utcnow, Conversation, Message, MESSAGE_TYPES

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 1000
MAX_PAGE_SIZE = 100


def _find_open(buyer_id, artist_id, painting_id):
    stmt = select(Conversation).where(Conversation.buyer_id == buyer_id,
                                      Conversation.artist_id == artist_id,
                                      Conversation.painting_id == painting_id,
                                      Conversation.status != 'archived')
    return db.session.execute(stmt).scalars().first()


def get_conversation(conversation_id, user_id):
    conversation = db.session.get(Conversation, conversation_id)
    if conversation is None:
        raise errors.NotFoundError("Conversation not found")
    if not conversation.is_party(user_id):
        raise errors.ForbiddenError("Access denied")
    return conversation


def open_conversation(principal, painting_id):
    """Return the open conversation for (buyer, artist, painting), creating it if needed.

    Returns ``(conversation, created)``.
    """
    painting = get_painting(painting_id)
    if painting.artist_id == principal.user_id:
        raise errors.ValidationError("You cannot start a conversation about your own painting")

    conversation = _find_open(principal.user_id, painting.artist_id, painting.id)
    if conversation is not None:
        return conversation, False

    conversation = Conversation(painting_id=painting.id, buyer_id=principal.user_id,
                                artist_id=painting.artist_id, status='active',
                                last_message_at=utcnow())
    db.session.add(conversation)
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent open created it first.
        db.session.rollback()
        conversation = _find_open(principal.user_id, painting.artist_id, painting.id)
        if conversation is None:
            raise
        return conversation, False
    logger.info("Conversation %s opened by buyer %s on painting %s",
                conversation.id, principal.user_id, painting.id)
    return conversation, True


def list_conversations(principal):
    if principal.role == 'artist':
        column = Conversation.artist_id
    else:
        column = Conversation.buyer_id
    stmt = select(Conversation).where(column == principal.user_id)\
        .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
    return db.session.execute(stmt).scalars().all()


def send_message(principal, conversation_id, content, message_type='text', offer_details=None):
    conversation = get_conversation(conversation_id, principal.user_id)
    if conversation.status != 'active':
        raise errors.ConflictError(f"Conversation is {conversation.status}")

    content = _clean_content(content)
    message_type = message_type or 'text'
    if message_type not in MESSAGE_TYPES:
        raise errors.ValidationError("Invalid message type")

    receiver_id = conversation.other_party(principal.user_id)
    now = utcnow()
    message = Message(conversation_id=conversation.id, sender_id=principal.user_id,
                      receiver_id=receiver_id, content=content, message_type=message_type,
                      created_at=now)
    if message_type == 'offer':
        if not isinstance(offer_details, dict):
            raise errors.ValidationError("Offer details are required")
        message.offer_price = parse_amount(offer_details.get('offerPrice'), 'offer price')
        message.offer_description = offer_details.get('offerDescription')
        message.offer_status = 'pending'
    db.session.add(message)
    db.session.flush()

    if receiver_id == conversation.buyer_id:
        counter = {'unread_buyer': Conversation.unread_buyer + 1}
    else:
        counter = {'unread_artist': Conversation.unread_artist + 1}
    db.session.execute(
        update(Conversation).where(Conversation.id == conversation.id)
        .values(last_message_id=message.id, last_message_at=now, **counter)
        .execution_options(synchronize_session=False))
    db.session.commit()

    realtime.publish(realtime.conversation_room(conversation.id), 'new_message', message.to_dict())
    return message


def list_messages(principal, conversation_id, page=1, limit=50):
    conversation = get_conversation(conversation_id, principal.user_id)
    page = max(1, page or 1)
    limit = min(max(1, limit or 50), MAX_PAGE_SIZE)

    stmt = select(Message).where(Message.conversation_id == conversation.id)\
        .order_by(Message.id.desc()).offset((page - 1) * limit).limit(limit)
    messages = list(reversed(db.session.execute(stmt).scalars().all()))

    db.session.execute(
        update(Message)
        .where(Message.conversation_id == conversation.id,
               Message.receiver_id == principal.user_id,
               Message.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False))
    if principal.user_id == conversation.buyer_id:
        conversation.unread_buyer = 0
    else:
        conversation.unread_artist = 0
    db.session.commit()
    return messages


def respond_to_offer(principal, message_id, decision):
    if decision not in ('accepted', 'declined'):
        raise errors.ValidationError("Status must be 'accepted' or 'declined'")
    message = db.session.get(Message, message_id)
    if message is None:
        raise errors.NotFoundError("Message not found")
    if message.receiver_id != principal.user_id:
        raise errors.ForbiddenError("Access denied")
    if message.message_type != 'offer':
        raise errors.InvalidStateError("Not an offer")
    if message.offer_status != 'pending':
        raise errors.InvalidStateError(f"Offer is already {message.offer_status}")

    stmt = (
        update(Message)
        .where(Message.id == message.id, Message.offer_status == 'pending')
        .values(offer_status=decision)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount != 1:
        db.session.rollback()
        raise errors.InvalidStateError("Offer is no longer pending")
    db.session.commit()
    logger.info("Offer message %s %s by %s", message.id, decision, principal.user_id)

    realtime.publish(realtime.conversation_room(message.conversation_id), 'auction_update', {
        'messageId': message.id,
        'conversationId': message.conversation_id,
        'status': decision,
    })
    return message


def _clean_content(content):
    if not isinstance(content, str) or not content.strip():
        raise errors.ValidationError("Message content is required")
    content = content.strip()
    if len(content) > MAX_CONTENT_LENGTH:
        raise errors.ValidationError(f"Message cannot exceed {MAX_CONTENT_LENGTH} characters")
    return content
