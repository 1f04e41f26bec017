"""
REST client for the Polymarket CLOB and Gamma APIs.
Market discovery, orderbook snapshots, order placement and balance reads.
"""

import asyncio
import json
import time
import uuid
from decimal import Decimal
from typing import Any, Optional

import aiohttp
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import OrderArgs, PartialCreateOrderOptions
from py_clob_client.utilities import order_to_json

from ..errors import InvalidInputError, TransientFetchError
from ..orderbook import OrderBookSnapshot
from .auth import AuthManager
from .types import (
    MarketFilter,
    MarketInfo,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderStatus,
)


class RateLimiter:
    """Simple sliding-window rate limiter."""

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: list[float] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request can be made."""
        async with self._lock:
            now = time.time()
            self.requests = [t for t in self.requests if now - t < self.window_seconds]

            if len(self.requests) >= self.max_requests:
                sleep_time = self.window_seconds - (now - self.requests[0])
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)
                self.requests = self.requests[1:]

            self.requests.append(time.time())


def _json_list(value: Any) -> list:
    """Gamma encodes some list fields as JSON strings."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return []
    return list(value or [])


def parse_gamma_market(data: dict[str, Any]) -> Optional[MarketInfo]:
    """Gamma market payload to MarketInfo. None for non-binary markets."""
    token_ids = _json_list(data.get("clobTokenIds"))
    if len(token_ids) != 2:
        return None

    outcomes = [str(o).lower() for o in _json_list(data.get("outcomes"))]
    yes_id, no_id = token_ids
    if outcomes == ["no", "yes"]:
        yes_id, no_id = no_id, yes_id

    return MarketInfo(
        condition_id=data.get("conditionId", ""),
        yes_token_id=str(yes_id),
        no_token_id=str(no_id),
        question=data.get("question", ""),
        volume_24h=Decimal(str(data.get("volume24hr") or "0")),
        active=bool(data.get("active", True)),
        closed=bool(data.get("closed", False)),
        resolved=data.get("umaResolutionStatus") == "resolved",
        tick_size=str(data.get("orderPriceMinTickSize") or "0.01"),
        neg_risk=bool(data.get("negRisk", False)),
    )


_ORDER_STATUS = {
    "matched": OrderStatus.FILLED,
    "live": OrderStatus.OPEN,
    "delayed": OrderStatus.OPEN,
    "unmatched": OrderStatus.CANCELLED,
}


class PolymarketRestClient:
    """
    REST client for Polymarket.

    Implements MarketSource, the snapshot half of OrderBookSource, and
    OrderClient. Orders are signed with py-clob-client and posted here.
    """

    def __init__(
        self,
        auth_manager: Optional[AuthManager] = None,
        base_url: str = "https://clob.polymarket.com",
        gamma_url: str = "https://gamma-api.polymarket.com",
        timeout_seconds: int = 10,
        max_retries: int = 3,
        retry_backoff_base: float = 1.5,
        signature_type: int = 0,
    ):
        self.auth = auth_manager
        self.base_url = base_url.rstrip("/")
        self.gamma_url = gamma_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self._session: Optional[aiohttp.ClientSession] = None

        # Public endpoints work without a wallet; signing needs one
        self._signer: Optional[ClobClient] = None
        if auth_manager is not None:
            self._signer = ClobClient(
                self.base_url,
                key=auth_manager.private_key,
                chain_id=auth_manager.chain_id,
                signature_type=signature_type,
            )

        # Rate limiters per endpoint category
        self._book_limiter = RateLimiter(150, 10)
        self._order_limiter = RateLimiter(350, 10)
        self._general_limiter = RateLimiter(900, 10)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        url: str,
        authenticated: bool = False,
        body: Optional[dict] = None,
        limiter: Optional[RateLimiter] = None,
    ) -> Any:
        """HTTP request with 429 backoff. Reads only are retried on errors."""
        session = await self._get_session()
        limiter = limiter or self._general_limiter
        retry_errors = method == "GET"

        for attempt in range(self.max_retries):
            await limiter.acquire()

            headers = {"Content-Type": "application/json"}
            body_str = json.dumps(body) if body else ""

            if authenticated:
                if self.auth is None:
                    raise InvalidInputError("A wallet key is required for authenticated endpoints")
                path = url.replace(self.base_url, "").split("?")[0]
                headers.update(self.auth.get_l2_headers(method, path, body_str))

            try:
                async with session.request(
                    method,
                    url,
                    headers=headers,
                    data=body_str if body else None,
                ) as response:
                    if response.status == 429:
                        await asyncio.sleep(self.retry_backoff_base ** attempt)
                        continue

                    response.raise_for_status()
                    return await response.json()

            except aiohttp.ClientError:
                if not retry_errors or attempt == self.max_retries - 1:
                    raise
                await asyncio.sleep(self.retry_backoff_base ** attempt)

        raise TransientFetchError(f"Rate limited after {self.max_retries} attempts", resource=url)

    # === MarketSource ===

    async def list_markets(self, market_filter: MarketFilter) -> list[MarketInfo]:
        """Binary markets from Gamma, highest 24h volume first."""
        params = [
            f"limit={market_filter.limit}",
            "order=volume24hr",
            "ascending=false",
            f"volume_num_min={market_filter.min_volume_24h}",
        ]
        if market_filter.active_only:
            params += ["active=true", "closed=false"]
        url = f"{self.gamma_url}/markets?{'&'.join(params)}"
        data = await self._request("GET", url)

        markets = []
        for raw in data or []:
            market = parse_gamma_market(raw)
            if market is None or market.volume_24h < market_filter.min_volume_24h:
                continue
            markets.append(market)
        return markets

    async def get_market(self, condition_id: str) -> MarketInfo:
        url = f"{self.gamma_url}/markets?condition_ids={condition_id}"
        data = await self._request("GET", url)
        for raw in data or []:
            market = parse_gamma_market(raw)
            if market is not None and market.condition_id == condition_id:
                return market
        raise TransientFetchError(f"Market {condition_id} not found", resource="market")

    # === OrderBookSource (snapshots) ===

    async def get_order_book(self, token_id: str) -> OrderBookSnapshot:
        """Book snapshot, normalized (the CLOB lists bids worst-first)."""
        url = f"{self.base_url}/book?token_id={token_id}"
        data = await self._request("GET", url, limiter=self._book_limiter)
        return OrderBookSnapshot.from_raw(
            data.get("asset_id", token_id),
            data.get("bids", []),
            data.get("asks", []),
            timestamp=int(data.get("timestamp", 0) or 0),
            book_hash=data.get("hash", ""),
        )

    # === Authentication ===

    async def derive_api_key(self, nonce: int = 0) -> dict[str, str]:
        """Derive API credentials using L1 authentication."""
        url = f"{self.base_url}/auth/derive-api-key"
        session = await self._get_session()

        headers = self.auth.get_l1_headers(nonce)
        headers["Content-Type"] = "application/json"

        async with session.get(url, headers=headers) as response:
            response.raise_for_status()
            data = await response.json()

        self.auth.set_api_credentials(data["apiKey"], data["secret"], data["passphrase"])
        return {
            "api_key": data["apiKey"],
            "api_secret": data["secret"],
            "api_passphrase": data["passphrase"],
        }

    async def ensure_api_credentials(self) -> None:
        if self.auth is not None and not self.auth.has_l2_credentials():
            await self.derive_api_key()

    # === OrderClient ===

    def _sign(self, request: OrderRequest) -> Any:
        if self._signer is None:
            raise InvalidInputError("A wallet key is required to place orders")
        args = OrderArgs(
            token_id=request.token_id,
            price=float(request.price),
            size=float(request.size),
            side=request.side.value,
        )
        options = PartialCreateOrderOptions(tick_size=request.tick_size, neg_risk=request.neg_risk)
        return self._signer.create_order(args, options)

    async def place_order(self, request: OrderRequest) -> OrderResult:
        """
        Sign and post one order. The exchange reports filled amounts as
        makingAmount/takingAmount; which is shares depends on the side.
        """
        signed = await asyncio.to_thread(self._sign, request)
        body = order_to_json(signed, self.auth.api_key, request.order_type.value)

        data = await self._request(
            "POST",
            f"{self.base_url}/order",
            authenticated=True,
            body=body,
            limiter=self._order_limiter,
        )

        order_id = data.get("orderID") or str(uuid.uuid4())
        if not data.get("success", False):
            return OrderResult(
                order_id=order_id,
                status=OrderStatus.REJECTED,
                error=data.get("errorMsg") or "order rejected",
            )

        making = Decimal(str(data.get("makingAmount") or "0"))
        taking = Decimal(str(data.get("takingAmount") or "0"))
        if request.side is OrderSide.BUY:
            shares, usdc = taking, making
        else:
            shares, usdc = making, taking

        status = _ORDER_STATUS.get(str(data.get("status", "")).lower(), OrderStatus.OPEN)
        if status is OrderStatus.FILLED and shares < request.size:
            status = OrderStatus.PARTIAL

        return OrderResult(
            order_id=order_id,
            status=status,
            filled_size=shares,
            avg_price=(usdc / shares) if shares > 0 else None,
            error=data.get("errorMsg") or None,
        )
