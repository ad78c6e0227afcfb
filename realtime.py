"""
Realtime fan-out channel.

One Socket.IO connection per logged-in client. The handshake must carry a
bearer token; every connection is put in its personal ``user_<id>`` room and
joins ``conversation_<id>`` / ``auction_<id>`` rooms on request.

Delivery is push-only and at-most-once. State changes reach this module
only after they are committed, through ``publish``.
"""
import logging

from flask import current_app, request
from flask_socketio import ConnectionRefusedError, SocketIO, join_room, leave_room

import auth
import errors
from models import db, Conversation, Painting

logger = logging.getLogger(__name__)

socketio = SocketIO()

# sid -> Principal for every authenticated connection in this process.
_connections = {}


def user_room(user_id):
    return f"user_{user_id}"


def conversation_room(conversation_id):
    return f"conversation_{conversation_id}"


def auction_room(painting_id):
    return f"auction_{painting_id}"


class EventPublisher:
    """Publish/subscribe seam. The topic is a room name; ``None`` means everyone."""

    def publish(self, room, event, payload):
        raise NotImplementedError


class SocketIOPublisher(EventPublisher):

    def __init__(self, socketio):
        self.socketio = socketio

    def publish(self, room, event, payload):
        # Notifications are best effort: a failed emit never fails the write
        # that triggered it. Clients reconcile with a REST read.
        try:
            if room is None:
                self.socketio.emit(event, payload)
            else:
                self.socketio.emit(event, payload, to=room)
        except Exception:
            logger.exception("Failed to publish %s to %s", event, room or 'everyone')


def publish(room, event, payload):
    current_app.extensions['event_publisher'].publish(room, event, payload)


def init_app(app):
    socketio.init_app(
        app,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE'),
        message_queue=app.config.get('SOCKETIO_MESSAGE_QUEUE'),
        cors_allowed_origins=app.config.get('CORS_ALLOWED_ORIGINS'),
    )
    app.extensions['event_publisher'] = SocketIOPublisher(socketio)


def connected_principal():
    return _connections.get(request.sid)


def _room_from(data):
    if isinstance(data, dict):
        return data.get('room')
    return data


def _conversation_id_from(data):
    if isinstance(data, dict):
        data = data.get('conversationId')
    try:
        return int(data)
    except (TypeError, ValueError):
        return None


def _can_join(principal, room):
    kind, _, raw_id = str(room).rpartition('_')
    try:
        target_id = int(raw_id)
    except ValueError:
        return False
    if kind == 'user':
        return target_id == principal.user_id
    if kind == 'conversation':
        conversation = db.session.get(Conversation, target_id)
        return conversation is not None and conversation.is_party(principal.user_id)
    if kind == 'auction':
        return db.session.get(Painting, target_id) is not None
    return False


@socketio.on('connect')
def handle_connect(auth_data=None):
    token = None
    if isinstance(auth_data, dict):
        token = auth_data.get('token')
    token = token or auth.bearer_token() or request.args.get('token')
    try:
        principal = auth.verify_token(token)
    except errors.UnauthorizedError as e:
        logger.info("Rejected socket handshake: %s", e.message)
        raise ConnectionRefusedError('unauthorized')

    _connections[request.sid] = principal
    join_room(user_room(principal.user_id))
    logger.debug("User %s connected (%s)", principal.user_id, request.sid)


@socketio.on('disconnect')
def handle_disconnect(*args):
    principal = _connections.pop(request.sid, None)
    if principal:
        logger.debug("User %s disconnected", principal.user_id)


@socketio.on('join_room')
def handle_join_room(data):
    principal = connected_principal()
    room = _room_from(data)
    if principal is None or not room or not _can_join(principal, room):
        return {'success': False, 'message': 'Cannot join room'}
    join_room(room)
    return {'success': True, 'room': room}


@socketio.on('leave_room')
def handle_leave_room(data):
    room = _room_from(data)
    if not room:
        return {'success': False, 'message': 'Room is required'}
    leave_room(room)
    return {'success': True, 'room': room}


def _relay_typing(data, typing):
    principal = connected_principal()
    conversation_id = _conversation_id_from(data)
    if principal is None or conversation_id is None:
        return
    conversation = db.session.get(Conversation, conversation_id)
    if conversation is None or not conversation.is_party(principal.user_id):
        return
    socketio.emit('user_typing', {
        'conversationId': conversation_id,
        'userId': principal.user_id,
        'typing': typing,
    }, to=conversation_room(conversation_id), skip_sid=request.sid)


@socketio.on('typing_start')
def handle_typing_start(data):
    _relay_typing(data, True)


@socketio.on('typing_stop')
def handle_typing_stop(data):
    _relay_typing(data, False)
