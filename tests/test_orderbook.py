"""Tests for book normalization and the live market book."""

import itertools
from decimal import Decimal

import pytest

from polymarket_arb_engine.errors import InvalidInputError
from polymarket_arb_engine.orderbook import MarketBook, OrderBookSnapshot, normalize_levels

D = Decimal


def test_bids_listed_worst_first_are_reordered():
    # The CLOB REST book lists bids ascending
    levels = normalize_levels(
        [{"price": "0.30", "size": "10"}, {"price": "0.35", "size": "5"}, {"price": "0.41", "size": "7"}],
        is_bid=True,
    )
    assert [lvl.price for lvl in levels] == [D("0.41"), D("0.35"), D("0.30")]


def test_asks_sorted_ascending():
    levels = normalize_levels([("0.60", "1"), ("0.52", "2"), ("0.55", "3")], is_bid=False)
    assert [lvl.price for lvl in levels] == [D("0.52"), D("0.55"), D("0.60")]


def test_duplicate_prices_are_summed_and_empty_levels_dropped():
    levels = normalize_levels([("0.50", "10"), ("0.50", "5"), ("0.49", "0")], is_bid=True)

    assert len(levels) == 1
    assert levels[0].size == D("15")


def test_malformed_level_rejected():
    with pytest.raises(InvalidInputError):
        normalize_levels([{"price": "0.5"}], is_bid=True)


def test_snapshot_best_levels():
    snap = OrderBookSnapshot.from_raw("tok", [("0.30", "10"), ("0.45", "2")], [("0.50", "4")])

    assert snap.best_bid.price == D("0.45")
    assert snap.best_ask.price == D("0.50")
    assert OrderBookSnapshot.from_raw("tok", [], []).best_bid is None


@pytest.fixture
def book():
    mb = MarketBook(condition_id="0xabc", yes_token_id="y", no_token_id="n")
    mb.apply_snapshot(OrderBookSnapshot.from_raw("y", [("0.40", "10")], [("0.45", "10")]))
    return mb


def test_not_ready_until_both_snapshots(book):
    assert not book.is_ready
    book.apply_snapshot(OrderBookSnapshot.from_raw("n", [("0.50", "10")], [("0.58", "10")]))
    assert book.is_ready
    assert book.best_prices() == (D("0.40"), D("0.45"), D("0.50"), D("0.58"))


def test_price_change_updates_and_removes_levels(book):
    assert book.apply_price_change("y", "BUY", D("0.42"), D("3"))
    assert book.yes_book.best_bid == D("0.42")

    book.apply_price_change("y", "BUY", D("0.42"), D("0"))
    assert book.yes_book.best_bid == D("0.40")

    book.apply_price_change("y", "SELL", D("0.44"), D("6"))
    assert book.best_depth().ask_yes == D("6")


def test_foreign_token_ignored(book):
    assert not book.apply_price_change("other", "BUY", D("0.5"), D("1"))
    assert not book.apply_snapshot(OrderBookSnapshot.from_raw("other", [], []))


RAW_LEVELS = [("0.30", "10"), ("0.45", "2"), ("0.38", "5"), ("0.45", "1"), ("0.52", "0"), ("0.41", "7")]


@pytest.mark.parametrize("ordering", list(itertools.permutations(range(len(RAW_LEVELS)), 3)))
def test_normalized_order_independent_of_payload_order(ordering):
    # Listed levels first in the permuted order, the rest reversed after them
    order = list(ordering) + [i for i in reversed(range(len(RAW_LEVELS))) if i not in ordering]
    payload = [RAW_LEVELS[i] for i in order]

    snap = OrderBookSnapshot.from_raw("tok", payload, payload)

    bid_prices = [lvl.price for lvl in snap.bids]
    ask_prices = [lvl.price for lvl in snap.asks]
    assert all(a > b for a, b in zip(bid_prices, bid_prices[1:]))
    assert all(a < b for a, b in zip(ask_prices, ask_prices[1:]))
    assert bid_prices == [D("0.45"), D("0.41"), D("0.38"), D("0.30")]
    assert snap.best_bid.size == D("3")
    assert ask_prices == list(reversed(bid_prices))
