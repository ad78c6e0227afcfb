import pytest
from sqlalchemy.orm.attributes import set_committed_value

import auctions
import errors
from ledger import parse_amount
from models import db, Bid


@pytest.fixture
def live_painting(app, artist, painting, principal):
    auctions.start_auction(principal(artist), painting.id, 1, starting_price=100, bid_increment=10)
    return painting


def ledger_state(painting):
    db.session.refresh(painting)
    bids = auctions.auction_ledger().entries(painting)
    return painting.auction_current_bid, painting.auction_participant_count, [b.amount for b in bids]


def test_current_bid_follows_each_admitted_bid(live_painting, buyer, other_buyer, principal):
    seen = []
    for user, amount in [(buyer, 100), (other_buyer, 125), (buyer, 130), (other_buyer, 400)]:
        auctions.place_bid(principal(user), live_painting.id, amount)
        current, _, bids = ledger_state(live_painting)
        assert current == amount == bids[-1]
        seen.append(current)
    assert seen == sorted(seen)


@pytest.mark.parametrize('amount', [150, 120, 50])
def test_rejected_bid_leaves_ledger_untouched(live_painting, buyer, other_buyer, principal, amount):
    auctions.place_bid(principal(buyer), live_painting.id, 150)
    before = ledger_state(live_painting)

    with pytest.raises(errors.BidTooLowError):
        auctions.place_bid(principal(other_buyer), live_painting.id, amount)

    assert ledger_state(live_painting) == before


def test_first_bid_below_starting_price_is_rejected(live_painting, buyer, principal):
    with pytest.raises(errors.BidTooLowError) as exc:
        auctions.place_bid(principal(buyer), live_painting.id, 99)
    assert 'at least' in exc.value.message
    assert ledger_state(live_painting) == (0, 0, [])


def test_participant_count_is_distinct_bidders(live_painting, buyer, other_buyer, make_user, principal):
    third = make_user('buyer')
    sequence = [(buyer, 100), (buyer, 110), (other_buyer, 120), (buyer, 130), (third, 140)]
    expected = [1, 1, 2, 2, 3]
    for (user, amount), count in zip(sequence, expected):
        auctions.place_bid(principal(user), live_painting.id, amount)
        _, participants, _ = ledger_state(live_painting)
        assert participants == count


def test_stale_read_cannot_overwrite_a_higher_bid(live_painting, buyer, other_buyer, principal):
    auctions.place_bid(principal(other_buyer), live_painting.id, 200)

    # This request read the painting before the 200 bid committed.
    assert live_painting.auction_current_bid == 200
    set_committed_value(live_painting, 'auction_current_bid', 0)

    with pytest.raises(errors.BidTooLowError):
        auctions.auction_ledger().admit(live_painting, buyer.id, buyer.name, 150)

    current, participants, bids = ledger_state(live_painting)
    assert current == 200
    assert participants == 1
    assert bids == [200]


def test_enforced_increment(app, live_painting, buyer, other_buyer, principal):
    app.config['ENFORCE_BID_INCREMENT'] = True
    auctions.place_bid(principal(buyer), live_painting.id, 100)

    with pytest.raises(errors.BidTooLowError) as exc:
        auctions.place_bid(principal(other_buyer), live_painting.id, 105)
    assert '$110' in exc.value.message

    auctions.place_bid(principal(other_buyer), live_painting.id, 110)
    assert ledger_state(live_painting)[0] == 110


def test_lenient_increment_by_default(live_painting, buyer, other_buyer, principal):
    auctions.place_bid(principal(buyer), live_painting.id, 100)
    auctions.place_bid(principal(other_buyer), live_painting.id, 101)
    assert ledger_state(live_painting)[0] == 101
    assert auctions.minimum_next_bid(live_painting) == 111


def test_restart_gives_empty_ledger_and_keeps_history(live_painting, artist, buyer, principal):
    auctions.end_auction(principal(artist), live_painting.id)    # no bids: back to available
    db.session.refresh(live_painting)
    assert live_painting.status == 'available'

    auctions.start_auction(principal(artist), live_painting.id, 2)
    auctions.place_bid(principal(buyer), live_painting.id, 100)
    auctions.end_auction(principal(artist), live_painting.id)
    db.session.refresh(live_painting)
    assert live_painting.auction_round == 2

    # a third start is refused: the painting is sold
    with pytest.raises(errors.ConflictError):
        auctions.start_auction(principal(artist), live_painting.id, 1)
    assert db.session.query(Bid).filter_by(painting_id=live_painting.id).count() == 1


@pytest.mark.parametrize('value', [None, '', 'abc', True, -5, 0, 0.004, float('nan'), float('inf'),
                                   1e8, '100000000', 99999999.996])
def test_parse_amount_rejects(value):
    with pytest.raises(errors.ValidationError):
        parse_amount(value)


def test_parse_amount_accepts_numeric_strings():
    assert parse_amount('150.456') == 150.46
    assert parse_amount(0, allow_zero=True) == 0
