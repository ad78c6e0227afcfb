from flask import Blueprint, jsonify, request
from flask_caching import Cache

import auction_chat
import auctions
import conversations
import errors
from auth import current_principal, login_required, role_required

api = Blueprint('api', __name__, url_prefix='/api')
cache = Cache()

# The public auction listing tolerates a few seconds of staleness.
AUCTION_LIST_CACHE_TIMEOUT = 10


def _json():
    return request.get_json(silent=True) or {}


# --- Auctions ---

@api.route('/auctions')
@cache.cached(timeout=AUCTION_LIST_CACHE_TIMEOUT)
def list_auctions():
    return jsonify({'success': True, 'auctions': auctions.list_active_auctions()})


@api.route('/items/<int:painting_id>/auction/start', methods=['POST'])
@role_required('artist', "Only artists can start auctions")
def start_auction(painting_id):
    data = _json()
    painting, chat = auctions.start_auction(
        current_principal(), painting_id, data.get('duration'),
        starting_price=data.get('startingPrice'), bid_increment=data.get('bidIncrement'))
    return jsonify({
        'success': True,
        'message': 'Auction started successfully',
        'painting': painting.to_dict(),
        'auction': auctions.auction_to_dict(painting),
        'auctionChatId': chat.id,
    }), 201


@api.route('/items/<int:painting_id>/auction/join', methods=['POST'])
@role_required('buyer', "Only buyers can join auctions")
def join_auction(painting_id):
    painting, chat = auctions.join_auction(current_principal(), painting_id)
    return jsonify({
        'success': True,
        'message': 'Successfully joined auction',
        'auctionChatId': chat.id,
        'painting': painting.to_dict(),
        'timeRemaining': painting.time_remaining(),
    })


@api.route('/items/<int:painting_id>/auction/bid', methods=['POST'])
@role_required('buyer', "Only buyers can place bids")
def place_bid(painting_id):
    painting, bid = auctions.place_bid(current_principal(), painting_id, _json().get('amount'))
    return jsonify({
        'success': True,
        'message': 'Bid placed successfully',
        'bidId': bid.id,
        'currentBid': painting.auction_current_bid,
        'bidCount': len(auctions.auction_ledger().entries(painting)),
        'participantCount': painting.auction_participant_count,
        'timeRemaining': painting.time_remaining(),
    })


@api.route('/items/<int:painting_id>/auction')
def auction_details(painting_id):
    return jsonify(dict(auctions.get_auction_details(painting_id), success=True))


@api.route('/items/<int:painting_id>/auction/chat')
@login_required
def auction_chat_history(painting_id):
    limit = request.args.get('limit', 50, type=int)
    limit = min(max(1, limit), 200)
    return jsonify(dict(auction_chat.chat_history(painting_id, limit), success=True))


@api.route('/items/<int:painting_id>/auction/chat', methods=['POST'])
@login_required
def post_auction_message(painting_id):
    message = auction_chat.post_message(current_principal(), painting_id, _json().get('content'))
    return jsonify({'success': True, 'message': 'Message sent successfully', 'chatMessage': message.to_dict()})


@api.route('/items/<int:painting_id>/auction/end', methods=['POST'])
@login_required
def end_auction(painting_id):
    summary = auctions.end_auction(current_principal(), painting_id)
    return jsonify(dict(summary, success=True, message='Auction ended successfully'))


# --- Direct-sale offers ---

@api.route('/items/<int:painting_id>/bids', methods=['POST'])
@role_required('buyer', "Only buyers can make offers")
def submit_offer(painting_id):
    painting, bid = auctions.submit_offer(current_principal(), painting_id, _json().get('amount'))
    return jsonify({
        'success': True,
        'message': 'Offer submitted',
        'bid': bid.to_dict(),
        'currentBid': painting.auction_current_bid,
        'participantCount': painting.auction_participant_count,
    }), 201


@api.route('/items/<int:painting_id>/bids')
@login_required
def list_offers(painting_id):
    bids = auctions.list_offers(current_principal(), painting_id)
    return jsonify({'success': True, 'bids': [b.to_dict() for b in bids]})


@api.route('/items/<int:painting_id>/bids/<int:bid_id>/accept', methods=['POST'])
@role_required('artist', "Only the artist can accept a bid")
def accept_offer(painting_id, bid_id):
    painting, bid, order = auctions.accept_offer(current_principal(), painting_id, bid_id)
    return jsonify({
        'success': True,
        'message': 'Bid accepted',
        'buyerId': bid.bidder_id,
        'amount': bid.amount,
        'orderId': order.id,
        'painting': painting.to_dict(),
    })


@api.route('/orders')
@login_required
def list_orders():
    orders = auctions.list_orders(current_principal())
    return jsonify({'success': True, 'orders': [o.to_dict() for o in orders]})


# --- Conversations ---

@api.route('/conversations')
@login_required
def list_conversations():
    items = conversations.list_conversations(current_principal())
    return jsonify({'success': True, 'conversations': [c.to_dict() for c in items]})


@api.route('/conversations', methods=['POST'])
@role_required('buyer', "Only buyers can start conversations")
def open_conversation():
    painting_id = _json().get('itemId')
    if not isinstance(painting_id, int) or isinstance(painting_id, bool):
        raise errors.ValidationError("itemId is required")
    conversation, created = conversations.open_conversation(current_principal(), painting_id)
    body = {'success': True, 'conversation': conversation.to_dict()}
    if not created:
        body['message'] = 'Conversation already exists'
    return jsonify(body), 201 if created else 200


@api.route('/conversations/<int:conversation_id>/messages')
@login_required
def list_messages(conversation_id):
    page = request.args.get('page', 1, type=int)
    limit = request.args.get('limit', 50, type=int)
    messages = conversations.list_messages(current_principal(), conversation_id, page, limit)
    return jsonify({'success': True, 'messages': [m.to_dict() for m in messages]})


@api.route('/conversations/<int:conversation_id>/messages', methods=['POST'])
@login_required
def send_message(conversation_id):
    data = _json()
    message = conversations.send_message(current_principal(), conversation_id, data.get('content'),
                                         data.get('messageType', 'text'), data.get('offerDetails'))
    return jsonify({'success': True, 'message': message.to_dict()}), 201


@api.route('/messages/<int:message_id>/offer', methods=['PATCH'])
@login_required
def respond_to_offer(message_id):
    message = conversations.respond_to_offer(current_principal(), message_id, _json().get('status'))
    return jsonify({'success': True, 'message': message.to_dict()})
