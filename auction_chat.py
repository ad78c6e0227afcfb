import logging

from sqlalchemy import select

import errors
import realtime
from models import db, utcnow, AuctionChat, AuctionChatMessage, AuctionChatParticipant, \
    AUCTION_CHAT_MESSAGE_TYPES

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 500
SYSTEM_SENDER = 'System'


def find_room(painting_id):
    stmt = select(AuctionChat).where(AuctionChat.painting_id == painting_id)
    return db.session.execute(stmt).scalars().first()


def get_room(painting_id):
    chat = find_room(painting_id)
    if chat is None:
        raise errors.NotFoundError("Auction chat not found")
    return chat


def open_room(painting, owner_id, owner_name, announcement):
    """Create the painting's chat room, or reset it for a new auction round.

    Participants of a previous round have to join again.
    """
    chat = find_room(painting.id)
    if chat is None:
        chat = AuctionChat(painting_id=painting.id, artist_id=owner_id)
        db.session.add(chat)
        db.session.flush()
    else:
        chat.is_active = True
        for participant in chat.participants:
            participant.is_active = False
    add_participant(chat, owner_id, owner_name)
    add_message(chat, owner_id, SYSTEM_SENDER, announcement, 'auction_started')
    return chat


def add_participant(chat, user_id, username):
    now = utcnow()
    existing = next((p for p in chat.participants if p.user_id == user_id), None)
    if existing is not None:
        existing.is_active = True
        existing.joined_at = now
        existing.username = username
    else:
        chat.participants.append(AuctionChatParticipant(
            user_id=user_id, username=username, joined_at=now, is_active=True))
    chat.last_activity = now
    return chat


def is_participant(chat, user_id):
    return any(p.user_id == user_id and p.is_active for p in chat.participants)


def add_message(chat, sender_id, sender_name, content, message_type='text', bid_amount=None):
    if message_type not in AUCTION_CHAT_MESSAGE_TYPES:
        raise errors.ValidationError("Invalid message type")
    content = _clean_content(content)
    now = utcnow()
    message = AuctionChatMessage(chat_id=chat.id, sender_id=sender_id, sender_name=sender_name,
                                 content=content, message_type=message_type,
                                 bid_amount=bid_amount, timestamp=now)
    db.session.add(message)
    chat.last_activity = now
    return message


def recent_messages(chat, limit=50):
    # Newest first by insertion id, then flipped. Timestamps may collide.
    stmt = select(AuctionChatMessage).where(AuctionChatMessage.chat_id == chat.id)\
        .order_by(AuctionChatMessage.id.desc()).limit(limit)
    messages = db.session.execute(stmt).scalars().all()
    return list(reversed(messages))


def chat_history(painting_id, limit=50):
    chat = get_room(painting_id)
    return {
        'chatId': chat.id,
        'isActive': chat.is_active,
        'messages': [m.to_dict() for m in recent_messages(chat, limit)],
        'participants': [p.to_dict() for p in chat.participants],
    }


def post_message(principal, painting_id, content):
    chat = get_room(painting_id)
    if not is_participant(chat, principal.user_id):
        raise errors.ForbiddenError("You are not a participant in this auction")
    if not chat.is_active:
        raise errors.ConflictError("This auction chat is closed")

    message = add_message(chat, principal.user_id, principal.name, content, 'text')
    db.session.commit()

    payload = message.to_dict()
    payload['paintingId'] = painting_id
    realtime.publish(realtime.auction_room(painting_id), 'auction_message', payload)
    return message


def _clean_content(content):
    if not isinstance(content, str) or not content.strip():
        raise errors.ValidationError("Message content is required")
    content = content.strip()
    if len(content) > MAX_CONTENT_LENGTH:
        raise errors.ValidationError(f"Message cannot exceed {MAX_CONTENT_LENGTH} characters")
    return content
