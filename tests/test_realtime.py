import pytest

import realtime
from auth import issue_token


@pytest.fixture
def connect(app):
    clients = []

    def _connect(user=None, **kwargs):
        if user is not None:
            kwargs.setdefault('auth', {'token': issue_token(user)})
        sio = realtime.socketio.test_client(app, **kwargs)
        clients.append(sio)
        return sio
    yield _connect
    for sio in clients:
        if sio.is_connected():
            sio.disconnect()


def received(sio, event):
    return [item['args'][0] for item in sio.get_received() if item['name'] == event]


def test_handshake_requires_token(connect):
    assert not connect().is_connected()
    assert not connect(auth={'token': 'not-a-token'}).is_connected()


def test_handshake_accepts_token_sources(connect, buyer):
    assert connect(buyer).is_connected()
    token = issue_token(buyer)
    assert connect(query_string=f'token={token}').is_connected()
    assert connect(headers={'Authorization': f'Bearer {token}'}).is_connected()


def test_expired_token_is_refused(app, connect, buyer):
    app.config['TOKEN_MAX_AGE'] = -1
    assert not connect(buyer).is_connected()


def test_auction_room_receives_bids(client, headers, connect, artist, buyer, painting):
    client.post(f'/api/items/{painting.id}/auction/start', json={'duration': 1}, headers=headers(artist))
    watcher = connect(artist)
    ack = watcher.emit('join_room', {'room': f'auction_{painting.id}'}, callback=True)
    assert ack == {'success': True, 'room': f'auction_{painting.id}'}
    watcher.get_received()

    client.post(f'/api/items/{painting.id}/auction/bid', json={'amount': 125}, headers=headers(buyer))
    [payload] = received(watcher, 'new_bid')
    assert payload['bidderId'] == buyer.id
    assert payload['currentBid'] == 125


def test_room_authorization(client, headers, connect, buyer, other_buyer, painting):
    resp = client.post('/api/conversations', json={'itemId': painting.id}, headers=headers(buyer))
    conversation_id = resp.get_json()['conversation']['id']
    outsider = connect(other_buyer)

    assert outsider.emit('join_room', f'conversation_{conversation_id}', callback=True)['success'] is False
    assert outsider.emit('join_room', {'room': f'user_{buyer.id}'}, callback=True)['success'] is False
    assert outsider.emit('join_room', {'room': 'auction_999'}, callback=True)['success'] is False
    assert outsider.emit('join_room', {'room': 'lobby'}, callback=True)['success'] is False

    party = connect(buyer)
    assert party.emit('join_room', f'conversation_{conversation_id}', callback=True)['success'] is True


def test_conversation_room_receives_messages(client, headers, connect, artist, buyer, painting):
    resp = client.post('/api/conversations', json={'itemId': painting.id}, headers=headers(buyer))
    conversation_id = resp.get_json()['conversation']['id']
    sio = connect(artist)
    sio.emit('join_room', {'room': f'conversation_{conversation_id}'}, callback=True)

    client.post(f'/api/conversations/{conversation_id}/messages', json={'content': 'Hello'},
                headers=headers(buyer))
    [payload] = received(sio, 'new_message')
    assert payload['content'] == 'Hello'

    sio.emit('leave_room', {'room': f'conversation_{conversation_id}'}, callback=True)
    client.post(f'/api/conversations/{conversation_id}/messages', json={'content': 'Still there?'},
                headers=headers(buyer))
    assert received(sio, 'new_message') == []


def test_typing_is_relayed_to_the_other_party(client, headers, connect, artist, buyer, other_buyer,
                                              painting):
    resp = client.post('/api/conversations', json={'itemId': painting.id}, headers=headers(buyer))
    conversation_id = resp.get_json()['conversation']['id']
    buyer_sio = connect(buyer)
    artist_sio = connect(artist)
    for sio in (buyer_sio, artist_sio):
        sio.emit('join_room', {'room': f'conversation_{conversation_id}'}, callback=True)
        sio.get_received()

    buyer_sio.emit('typing_start', {'conversationId': conversation_id})
    buyer_sio.emit('typing_stop', {'conversationId': conversation_id})

    typing = received(artist_sio, 'user_typing')
    assert [t['typing'] for t in typing] == [True, False]
    assert typing[0] == {'conversationId': conversation_id, 'userId': buyer.id, 'typing': True}
    assert received(buyer_sio, 'user_typing') == []

    # non-parties are ignored
    outsider = connect(other_buyer)
    outsider.emit('typing_start', {'conversationId': conversation_id})
    assert received(artist_sio, 'user_typing') == []


def test_personal_room_receives_offer_acceptance(client, headers, connect, artist, buyer, painting):
    sio = connect(buyer)
    resp = client.post(f'/api/items/{painting.id}/bids', json={'amount': 120}, headers=headers(buyer))
    bid_id = resp.get_json()['bid']['id']
    client.post(f'/api/items/{painting.id}/bids/{bid_id}/accept', headers=headers(artist))

    [payload] = received(sio, 'offer_accepted')
    assert payload['bidId'] == bid_id
    assert payload['amount'] == 120


def test_auction_started_is_broadcast(client, headers, connect, artist, other_buyer, painting):
    sio = connect(other_buyer)
    client.post(f'/api/items/{painting.id}/auction/start', json={'duration': 1}, headers=headers(artist))
    [payload] = received(sio, 'auction_started')
    assert payload['paintingId'] == painting.id


class ExplodingSocketIO:

    def emit(self, *args, **kwargs):
        raise RuntimeError('broker down')


def test_publish_failures_are_swallowed(caplog):
    publisher = realtime.SocketIOPublisher(ExplodingSocketIO())
    publisher.publish('auction_1', 'new_bid', {'amount': 1})
    assert 'Failed to publish new_bid to auction_1' in caplog.text


def test_failed_publish_does_not_fail_the_request(app, client, headers, artist, buyer, painting):
    app.extensions['event_publisher'] = realtime.SocketIOPublisher(ExplodingSocketIO())
    client.post(f'/api/items/{painting.id}/auction/start', json={'duration': 1}, headers=headers(artist))
    resp = client.post(f'/api/items/{painting.id}/auction/bid', json={'amount': 150}, headers=headers(buyer))
    assert resp.status_code == 200
    assert resp.get_json()['currentBid'] == 150
