"""
WebSocket client for the Polymarket CLOB market channel.
Streams normalized book snapshots and level deltas.
"""

import json
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Optional, TYPE_CHECKING

import websockets

from ..orderbook import OrderBookSnapshot
from .types import BookEvent, BookUpdate, PriceChange

if TYPE_CHECKING:
    from ..monitor import Logger
    from .rest_client import PolymarketRestClient


class WSMessageType(Enum):
    """Market channel message types."""
    BOOK = "book"
    PRICE_CHANGE = "price_change"


def parse_message(data: dict[str, Any]) -> list[BookEvent]:
    """
    One market-channel message to book events. Message types the engine does
    not use yield nothing.
    """
    event_type = data.get("event_type", "")

    if event_type == WSMessageType.BOOK.value:
        snapshot = OrderBookSnapshot.from_raw(
            data.get("asset_id", ""),
            data.get("bids", data.get("buys", [])),
            data.get("asks", data.get("sells", [])),
            timestamp=int(data.get("timestamp", 0) or 0),
            book_hash=data.get("hash", ""),
        )
        return [BookUpdate(snapshot=snapshot, market=data.get("market", ""))]

    if event_type == WSMessageType.PRICE_CHANGE.value:
        timestamp = int(data.get("timestamp", 0) or 0)
        return [
            PriceChange(
                asset_id=change.get("asset_id", data.get("asset_id", "")),
                price=Decimal(str(change.get("price", "0"))),
                size=Decimal(str(change.get("size", "0"))),
                side=str(change.get("side", "")).upper(),
                market=data.get("market", ""),
                timestamp=timestamp,
            )
            for change in data.get("price_changes", data.get("changes", []))
        ]

    return []


class PolymarketWebSocketClient:
    """
    OrderBookSource for live trading: snapshots come from the REST client,
    deltas from the market channel.

    One call to stream() is one connection. When the connection drops the
    iterator raises and the caller decides when to reconnect; the channel
    re-sends full books on every new subscription.
    """

    def __init__(
        self,
        rest_client: "PolymarketRestClient",
        ws_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market",
        ping_interval: int = 30,
        logger: Optional["Logger"] = None,
    ):
        self.rest = rest_client
        self.ws_url = ws_url
        self.ping_interval = ping_interval
        self.logger = logger

    async def get_order_book(self, token_id: str) -> OrderBookSnapshot:
        return await self.rest.get_order_book(token_id)

    async def stream(self, token_ids: list[str]) -> AsyncIterator[BookEvent]:
        async with websockets.connect(
            self.ws_url,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_interval * 2,
        ) as ws:
            await ws.send(json.dumps({"type": "MARKET", "assets_ids": list(token_ids)}))
            if self.logger:
                self.logger.ws_connected(self.ws_url)

            try:
                async for message in ws:
                    try:
                        payload = json.loads(message)
                    except json.JSONDecodeError:
                        continue

                    for data in payload if isinstance(payload, list) else [payload]:
                        for event in parse_message(data):
                            yield event
            finally:
                if self.logger:
                    self.logger.ws_disconnected("stream closed")
