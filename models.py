from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text
from datetime import datetime, timezone

db = SQLAlchemy()

# Money columns come back as floats so amounts compare cleanly with request values.
Money = db.Numeric(10, 2, asdecimal=False)

PAINTING_STATUSES = ('available', 'reserved', 'in_auction', 'sold')
SALE_TYPES = ('direct_sale', 'auction')
CONVERSATION_STATUSES = ('active', 'archived', 'blocked')
MESSAGE_TYPES = ('text', 'offer', 'offer_accept', 'offer_decline')
OFFER_STATUSES = ('pending', 'accepted', 'declined', 'expired')
AUCTION_CHAT_MESSAGE_TYPES = ('text', 'bid_placed', 'auction_started', 'auction_ended', 'system')


def utcnow():
    # Naive UTC, stored as-is in both PostgreSQL and SQLite.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() + 'Z' if value else None


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default='buyer')   # buyer|artist
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'role': self.role}


class Painting(db.Model):
    __tablename__ = 'paintings'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    image_url = db.Column(db.Text)
    price = db.Column(Money, nullable=False)
    artist_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='available')
    sale_type = db.Column(db.String(20), nullable=False, default='direct_sale')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Auction sub-record. Lives on the painting row so that the item and its
    # live auction are always written by the same UPDATE.
    auction_round = db.Column(db.Integer, nullable=False, default=0)
    auction_is_active = db.Column(db.Boolean, nullable=False, default=False)
    auction_start_time = db.Column(db.DateTime)
    auction_end_time = db.Column(db.DateTime, index=True)
    auction_starting_price = db.Column(Money)
    auction_bid_increment = db.Column(Money)
    auction_current_bid = db.Column(Money, nullable=False, default=0)
    auction_participant_count = db.Column(db.Integer, nullable=False, default=0)
    auction_winner_id = db.Column(db.Integer, db.ForeignKey('users.id'))

    artist = db.relationship('User', foreign_keys=[artist_id])
    winner = db.relationship('User', foreign_keys=[auction_winner_id])

    @property
    def has_auction(self):
        return self.auction_start_time is not None

    def is_auction_expired(self, now=None):
        if not self.auction_is_active or self.auction_end_time is None:
            return False
        return (now or utcnow()) >= self.auction_end_time

    def time_remaining(self, now=None):
        """Seconds left on an active auction, 0 otherwise."""
        if not self.auction_is_active or self.auction_end_time is None:
            return 0
        remaining = (self.auction_end_time - (now or utcnow())).total_seconds()
        return max(0, int(remaining))

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'imageUrl': self.image_url,
            'price': self.price,
            'artistId': self.artist_id,
            'artistName': self.artist.name if self.artist else None,
            'status': self.status,
            'saleType': self.sale_type,
        }


class Bid(db.Model):
    __tablename__ = 'bids'
    id = db.Column(db.Integer, primary_key=True)
    painting_id = db.Column(db.Integer, db.ForeignKey('paintings.id'), nullable=False)
    # A painting's ledger is the set of bids for its current auction_round.
    auction_round = db.Column(db.Integer, nullable=False, default=0)
    bidder_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    bidder_name = db.Column(db.String(255), nullable=False)
    amount = db.Column(Money, nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        db.Index('ix_bids_ledger', 'painting_id', 'auction_round', 'id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'bidder': self.bidder_id,
            'bidderName': self.bidder_name,
            'amount': self.amount,
            'timestamp': isoformat(self.timestamp),
        }


class Order(db.Model):
    __tablename__ = 'orders'
    id = db.Column(db.Integer, primary_key=True)
    painting_id = db.Column(db.Integer, db.ForeignKey('paintings.id'), nullable=False)
    buyer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    artist_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    bid_id = db.Column(db.Integer, db.ForeignKey('bids.id'))
    price = db.Column(Money, nullable=False)
    payment_status = db.Column(db.String(50), nullable=False, default='pending')
    order_status = db.Column(db.String(50), default='Ordered')
    created_at = db.Column(db.DateTime, default=utcnow)

    painting = db.relationship('Painting')

    def to_dict(self):
        return {
            'id': self.id,
            'paintingId': self.painting_id,
            'title': self.painting.title if self.painting else None,
            'buyerId': self.buyer_id,
            'artistId': self.artist_id,
            'bidId': self.bid_id,
            'price': self.price,
            'paymentStatus': self.payment_status,
            'orderStatus': self.order_status,
            'createdAt': isoformat(self.created_at),
        }


class AuctionChat(db.Model):
    __tablename__ = 'auction_chats'
    id = db.Column(db.Integer, primary_key=True)
    painting_id = db.Column(db.Integer, db.ForeignKey('paintings.id'), unique=True, nullable=False)
    artist_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_activity = db.Column(db.DateTime, default=utcnow)
    created_at = db.Column(db.DateTime, default=utcnow)

    participants = db.relationship('AuctionChatParticipant', order_by='AuctionChatParticipant.id',
                                   cascade='all, delete-orphan', back_populates='chat')

    def to_dict(self):
        return {
            'id': self.id,
            'paintingId': self.painting_id,
            'artistId': self.artist_id,
            'isActive': self.is_active,
            'lastActivity': isoformat(self.last_activity),
        }


class AuctionChatParticipant(db.Model):
    __tablename__ = 'auction_chat_participants'
    id = db.Column(db.Integer, primary_key=True)
    chat_id = db.Column(db.Integer, db.ForeignKey('auction_chats.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    username = db.Column(db.String(255), nullable=False)
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    chat = db.relationship('AuctionChat', back_populates='participants')

    __table_args__ = (
        db.UniqueConstraint('chat_id', 'user_id', name='uq_auction_chat_participant'),
    )

    def to_dict(self):
        return {
            'userId': self.user_id,
            'username': self.username,
            'joinedAt': isoformat(self.joined_at),
            'isActive': self.is_active,
        }


class AuctionChatMessage(db.Model):
    __tablename__ = 'auction_chat_messages'
    id = db.Column(db.Integer, primary_key=True)
    chat_id = db.Column(db.Integer, db.ForeignKey('auction_chats.id'), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    sender_name = db.Column(db.String(255), nullable=False)
    content = db.Column(db.String(500), nullable=False)
    message_type = db.Column(db.String(20), nullable=False, default='text')
    bid_amount = db.Column(Money)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'senderId': self.sender_id,
            'senderName': self.sender_name,
            'content': self.content,
            'messageType': self.message_type,
            'bidAmount': self.bid_amount,
            'timestamp': isoformat(self.timestamp),
        }


class Conversation(db.Model):
    __tablename__ = 'conversations'
    id = db.Column(db.Integer, primary_key=True)
    painting_id = db.Column(db.Integer, db.ForeignKey('paintings.id'), nullable=False)
    buyer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    artist_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='active')
    last_message_id = db.Column(db.Integer)
    last_message_at = db.Column(db.DateTime, default=utcnow)
    unread_buyer = db.Column(db.Integer, nullable=False, default=0)
    unread_artist = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)

    painting = db.relationship('Painting')
    buyer = db.relationship('User', foreign_keys=[buyer_id])
    artist = db.relationship('User', foreign_keys=[artist_id])
    last_message = db.relationship('Message', viewonly=True,
                                   primaryjoin='foreign(Conversation.last_message_id) == Message.id')

    __table_args__ = (
        # At most one open thread per (buyer, artist, painting).
        db.Index('uq_open_conversation', 'buyer_id', 'artist_id', 'painting_id', unique=True,
                 postgresql_where=text("status != 'archived'"),
                 sqlite_where=text("status != 'archived'")),
    )

    def is_party(self, user_id):
        return user_id in (self.buyer_id, self.artist_id)

    def other_party(self, user_id):
        return self.artist_id if user_id == self.buyer_id else self.buyer_id

    def to_dict(self):
        return {
            'id': self.id,
            'paintingId': self.painting_id,
            'paintingTitle': self.painting.title if self.painting else None,
            'buyerId': self.buyer_id,
            'buyerName': self.buyer.name if self.buyer else None,
            'artistId': self.artist_id,
            'artistName': self.artist.name if self.artist else None,
            'status': self.status,
            'lastMessage': self.last_message.to_dict() if self.last_message else None,
            'lastMessageAt': isoformat(self.last_message_at),
            'unreadCount': {'buyer': self.unread_buyer, 'artist': self.unread_artist},
        }


class Message(db.Model):
    __tablename__ = 'messages'
    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey('conversations.id'), nullable=False)
    sender_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    receiver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    content = db.Column(db.String(1000), nullable=False)
    message_type = db.Column(db.String(20), nullable=False, default='text')
    offer_price = db.Column(Money)
    offer_description = db.Column(db.Text)
    offer_status = db.Column(db.String(20))
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        db.Index('ix_messages_conversation', 'conversation_id', 'id'),
        db.Index('ix_messages_receiver_unread', 'receiver_id', 'is_read'),
    )

    def to_dict(self):
        data = {
            'id': self.id,
            'conversationId': self.conversation_id,
            'senderId': self.sender_id,
            'receiverId': self.receiver_id,
            'content': self.content,
            'messageType': self.message_type,
            'isRead': self.is_read,
            'readAt': isoformat(self.read_at),
            'createdAt': isoformat(self.created_at),
        }
        if self.message_type == 'offer':
            data['offerDetails'] = {
                'offerPrice': self.offer_price,
                'offerDescription': self.offer_description,
                'status': self.offer_status,
            }
        return data
