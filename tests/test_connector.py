"""Tests for payload parsing, auth headers, read retries, paper fills and CTF transactions."""

import base64
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from polymarket_arb_engine.config import ConnectionConfig
from polymarket_arb_engine.connector import (
    AuthManager,
    BookUpdate,
    CTFTokenClient,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    PriceChange,
)
from polymarket_arb_engine.connector.rest_client import parse_gamma_market
from polymarket_arb_engine.connector.retry import retry_with_backoff
from polymarket_arb_engine.connector.ws_client import parse_message
from polymarket_arb_engine.errors import InvalidInputError, OnChainError, TransientFetchError

from .helpers import CONDITION_ID, NO_TOKEN, YES_TOKEN

D = Decimal

# Well-known throwaway key (hardhat account #0)
TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


# === Market channel ===

def test_book_message_is_normalized():
    events = parse_message({
        "event_type": "book",
        "asset_id": "tok",
        "market": "0xm",
        "bids": [{"price": "0.30", "size": "5"}, {"price": "0.35", "size": "2"}],
        "asks": [{"price": "0.40", "size": "1"}],
        "timestamp": "1700000000000",
        "hash": "abc",
    })

    assert len(events) == 1
    update = events[0]
    assert isinstance(update, BookUpdate)
    assert update.asset_id == "tok"
    assert update.snapshot.best_bid.price == D("0.35")
    assert update.snapshot.hash == "abc"


def test_price_change_message_fans_out():
    events = parse_message({
        "event_type": "price_change",
        "market": "0xm",
        "timestamp": "1700000000000",
        "price_changes": [
            {"asset_id": "y", "price": "0.41", "size": "10", "side": "buy"},
            {"asset_id": "n", "price": "0.58", "size": "0", "side": "SELL"},
        ],
    })

    assert [type(e) for e in events] == [PriceChange, PriceChange]
    assert events[0].side == "BUY"
    assert events[1].size == D("0")


def test_unused_message_types_ignored():
    assert parse_message({"event_type": "last_trade_price", "price": "0.5"}) == []
    assert parse_message({}) == []


# === Gamma metadata ===

def test_gamma_market_parsed_with_json_encoded_fields():
    market = parse_gamma_market({
        "conditionId": "0xc",
        "question": "Q?",
        "clobTokenIds": '["111", "222"]',
        "outcomes": '["Yes", "No"]',
        "volume24hr": 1234.5,
        "orderPriceMinTickSize": 0.001,
        "negRisk": True,
    })

    assert market.yes_token_id == "111"
    assert market.no_token_id == "222"
    assert market.volume_24h == D("1234.5")
    assert market.tick_size == "0.001"
    assert market.neg_risk


def test_gamma_outcome_order_respected():
    market = parse_gamma_market({
        "conditionId": "0xc",
        "clobTokenIds": ["111", "222"],
        "outcomes": ["No", "Yes"],
    })

    assert market.yes_token_id == "222"
    assert market.no_token_id == "111"


def test_non_binary_market_skipped():
    assert parse_gamma_market({"conditionId": "0xc", "clobTokenIds": '["1", "2", "3"]'}) is None


# === Auth ===

def test_auth_requires_key():
    with pytest.raises(InvalidInputError):
        AuthManager("")


def test_l1_headers_signed_by_wallet():
    auth = AuthManager(TEST_KEY)

    headers = auth.get_l1_headers(nonce=3)

    assert headers["POLY_ADDRESS"] == "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
    assert headers["POLY_NONCE"] == "3"
    assert headers["POLY_SIGNATURE"].startswith("0x")
    assert len(headers["POLY_SIGNATURE"]) == 132


def test_l2_headers_need_credentials():
    auth = AuthManager(TEST_KEY)
    with pytest.raises(InvalidInputError):
        auth.get_l2_headers("GET", "/orders")

    secret = base64.urlsafe_b64encode(b"secret-bytes").decode()
    auth.set_api_credentials("key", secret, "pass")
    headers = auth.get_l2_headers("POST", "/order", "{}")

    assert headers["POLY_API_KEY"] == "key"
    assert headers["POLY_PASSPHRASE"] == "pass"
    assert base64.urlsafe_b64decode(headers["POLY_SIGNATURE"])


# === Retry ===

async def test_retry_succeeds_after_transient_failures():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("reset")
        return "book"

    result = await retry_with_backoff(flaky, initial_delay=0.001, jitter=False)

    assert result == "book"
    assert len(attempts) == 3


async def test_retry_gives_up_with_transient_fetch_error():
    async def down():
        raise ConnectionError("refused")

    with pytest.raises(TransientFetchError) as info:
        await retry_with_backoff(down, max_retries=2, initial_delay=0.001, resource="book:x")

    assert info.value.resource == "book:x"
    assert isinstance(info.value.__cause__, ConnectionError)


# === Paper exchange ===

async def test_paper_buy_matches_mirrored_bids(exchange):
    # No YES asks at all; a NO bid at 0.55 sells YES at 0.45
    exchange.set_book(YES_TOKEN, bids=[], asks=[])
    exchange.set_book(NO_TOKEN, bids=[("0.55", "30")], asks=[])

    result = await exchange.place_order(OrderRequest(YES_TOKEN, OrderSide.BUY, D("0.45"), D("20")))

    assert result.status is OrderStatus.FILLED
    assert result.avg_price == D("0.45")
    assert exchange.token_balance(YES_TOKEN) == D("20")
    assert exchange.usdc_balance == D("991")


async def test_paper_fok_without_depth_cancels(long_books):
    request = OrderRequest(YES_TOKEN, OrderSide.BUY, D("0.40"), D("150"), order_type=OrderType.FOK)

    result = await long_books.place_order(request)

    assert result.status is OrderStatus.CANCELLED
    assert long_books.token_balance(YES_TOKEN) == 0


async def test_paper_sell_without_inventory_rejected(long_books):
    result = await long_books.place_order(OrderRequest(YES_TOKEN, OrderSide.SELL, D("0.38"), D("5")))

    assert result.status is OrderStatus.REJECTED


async def test_paper_split_merge_redeem(exchange):
    await exchange.split(CONDITION_ID, D("50"))
    assert exchange.token_balance(YES_TOKEN) == D("50")
    assert exchange.usdc_balance == D("950")

    await exchange.merge(CONDITION_ID, [YES_TOKEN, NO_TOKEN], D("20"))
    assert exchange.usdc_balance == D("970")

    with pytest.raises(OnChainError):
        await exchange.merge(CONDITION_ID, [YES_TOKEN, NO_TOKEN], D("31"))
    with pytest.raises(OnChainError):
        await exchange.redeem(CONDITION_ID, [YES_TOKEN, NO_TOKEN])

    exchange.resolve_market(CONDITION_ID, NO_TOKEN)
    redeemed = await exchange.redeem(CONDITION_ID, [YES_TOKEN, NO_TOKEN])
    assert redeemed.amount == D("30")
    assert exchange.usdc_balance == D("1000")


async def test_paper_stream_replays_books_then_changes(long_books):
    stream = long_books.stream([YES_TOKEN, NO_TOKEN])

    first = await stream.__anext__()
    second = await stream.__anext__()
    long_books.push_price_change(NO_TOKEN, "BUY", "0.56", "4")
    third = await stream.__anext__()

    assert {first.asset_id, second.asset_id} == {YES_TOKEN, NO_TOKEN}
    assert isinstance(third, PriceChange)
    assert third.price == D("0.56")

    long_books.close_streams()
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()


# === CTF client ===

@pytest.fixture
def ctf_client():
    client = CTFTokenClient(TEST_KEY, ConnectionConfig())
    # No chain here: stub the web3 handle and the signer
    client.w3 = MagicMock()
    client.account = MagicMock()
    return client


def test_ctf_nonce_counts_pending_transactions(ctf_client):
    ctf_client.w3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    call = MagicMock()

    ctf_client._send("merge", CONDITION_ID, call)

    ctf_client.w3.eth.get_transaction_count.assert_called_once_with(ctf_client.address, "pending")
    tx_params = call.build_transaction.call_args.args[0]
    assert tx_params["nonce"] is ctf_client.w3.eth.get_transaction_count.return_value


def test_ctf_reverted_transaction_raises(ctf_client):
    ctf_client.w3.eth.wait_for_transaction_receipt.return_value = {"status": 0}

    with pytest.raises(OnChainError) as info:
        ctf_client._send("split", CONDITION_ID, MagicMock())

    assert info.value.operation == "split"
