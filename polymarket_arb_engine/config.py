"""
Configuration management for the Polymarket complement arbitrage engine.
All secrets via environment variables. All tunable parameters externalized.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class MarketConfig:
    """A binary market: one condition, a YES token and a NO token."""
    condition_id: str
    yes_token_id: str
    no_token_id: str
    name: str = ""
    tick_size: str = "0.01"
    neg_risk: bool = False

    @property
    def token_ids(self) -> list[str]:
        return [self.yes_token_id, self.no_token_id]


@dataclass
class TradingConfig:
    """Detection and execution parameters."""
    profit_threshold: float = 0.005  # Minimum profit fraction to act (0.5%)
    min_trade_size: float = 5.0  # Shares
    max_trade_size: float = 100.0  # Shares
    safety_factor: float = 0.8  # Fraction of visible depth a leg may take
    auto_execute: bool = False
    auto_fix_imbalance: bool = True
    auto_merge_long: bool = True  # Merge matched pairs right after a long arb
    clear_on_stop: bool = True  # Settle the market's inventory back to USDC on stop()
    imbalance_threshold: float = 5.0  # Shares of YES/NO difference tolerated
    order_type: str = "FOK"
    order_timeout_seconds: float = 15.0
    onchain_timeout_seconds: float = 120.0  # Receipt wait per split/merge/redeem transaction


@dataclass
class RebalancerConfig:
    """USDC / token mix bounds. Interval and cooldown are independent."""
    enabled: bool = True
    min_usdc_ratio: float = 0.2
    target_usdc_ratio: float = 0.5
    max_usdc_ratio: float = 0.8
    imbalance_threshold: float = 5.0
    rebalance_interval_seconds: float = 10.0
    rebalance_cooldown_seconds: float = 60.0


@dataclass
class ScannerConfig:
    """Market universe filter for scans."""
    min_volume_24h: float = 5000.0
    limit: int = 100
    max_concurrency: int = 8  # Parallel book fetches during a scan


@dataclass
class ConnectionConfig:
    """API connection configuration."""
    clob_rest_url: str = "https://clob.polymarket.com"
    clob_ws_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
    gamma_api_url: str = "https://gamma-api.polymarket.com"
    chain_id: int = 137  # Polygon mainnet
    polygon_rpc_url: str = field(default_factory=lambda: os.environ.get("POLYGON_RPC_URL", "https://polygon-rpc.com"))
    ctf_address: str = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"
    collateral_address: str = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"  # USDC.e
    neg_risk_adapter_address: str = "0xd91E80cF2E7be2e162c6513ceD06f1dD0dA35296"
    ws_reconnect_delay_seconds: int = 5
    ws_ping_interval_seconds: int = 30
    rest_timeout_seconds: int = 10
    max_retries: int = 3
    retry_backoff_base: float = 1.5


@dataclass
class Config:
    """Main configuration container."""
    # Secrets from environment
    private_key: str = field(default_factory=lambda: os.environ.get("POLYMARKET_PRIVATE_KEY", ""))
    signature_type: int = field(default_factory=lambda: int(os.environ.get("POLYMARKET_SIGNATURE_TYPE", "0")))

    # API credentials (derived from private key)
    api_key: Optional[str] = field(default_factory=lambda: os.environ.get("POLYMARKET_API_KEY"))
    api_secret: Optional[str] = field(default_factory=lambda: os.environ.get("POLYMARKET_API_SECRET"))
    api_passphrase: Optional[str] = field(default_factory=lambda: os.environ.get("POLYMARKET_API_PASSPHRASE"))

    # Sub-configs
    trading: TradingConfig = field(default_factory=TradingConfig)
    rebalancer: RebalancerConfig = field(default_factory=RebalancerConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)

    # Markets to clear on `clear`, or to pin instead of scanning
    markets: list[MarketConfig] = field(default_factory=list)

    # Logging
    log_level: str = field(default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(default_factory=lambda: os.environ.get("LOG_FILE"))

    def validate(self) -> list[str]:
        """Validate configuration. Returns list of errors."""
        errors = []
        trading = self.trading
        rebalancer = self.rebalancer

        if trading.profit_threshold < 0:
            errors.append("profit_threshold cannot be negative")
        if trading.min_trade_size <= 0:
            errors.append("min_trade_size must be positive")
        if trading.max_trade_size < trading.min_trade_size:
            errors.append("max_trade_size must be >= min_trade_size")
        if not 0 < trading.safety_factor <= 1:
            errors.append("safety_factor must be in (0, 1]")
        if trading.imbalance_threshold < 0:
            errors.append("imbalance_threshold cannot be negative")
        if trading.order_type.upper() not in ("GTC", "FOK", "FAK"):
            errors.append(f"unsupported order_type: {trading.order_type}")
        if trading.order_timeout_seconds <= 0:
            errors.append("order_timeout_seconds must be positive")

        ratios = (
            rebalancer.min_usdc_ratio,
            rebalancer.target_usdc_ratio,
            rebalancer.max_usdc_ratio,
        )
        if not all(0 <= r <= 1 for r in ratios):
            errors.append("rebalancer ratios must lie in [0, 1]")
        if not ratios[0] < ratios[1] < ratios[2]:
            errors.append("rebalancer ratios must satisfy min < target < max")
        if rebalancer.imbalance_threshold < 0:
            errors.append("rebalancer imbalance_threshold cannot be negative")
        if rebalancer.rebalance_interval_seconds <= 0:
            errors.append("rebalance_interval_seconds must be positive")
        if rebalancer.rebalance_cooldown_seconds < 0:
            errors.append("rebalance_cooldown_seconds cannot be negative")

        if self.scanner.max_concurrency < 1:
            errors.append("scanner max_concurrency must be at least 1")

        # Orders, balances and split/merge/redeem all go through the key's own
        # address; a proxy wallet would hold the inventory elsewhere
        if self.private_key and self.signature_type != 0:
            errors.append("signature_type must be 0 (EOA): proxy wallets are not supported")

        return errors


def parse_markets(markets_str: str) -> list[MarketConfig]:
    """
    Parse a market list.
    Format: condition_id:yes_token:no_token[:tick_size[:neg_risk]],...
    """
    markets = []
    for market_def in markets_str.split(","):
        parts = market_def.strip().split(":")
        if len(parts) >= 3:
            markets.append(MarketConfig(
                condition_id=parts[0],
                yes_token_id=parts[1],
                no_token_id=parts[2],
                tick_size=parts[3] if len(parts) > 3 else "0.01",
                neg_risk=parts[4].lower() == "true" if len(parts) > 4 else False,
            ))
    return markets


def _env_bool(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config_from_env() -> Config:
    """Load configuration from environment variables."""
    config = Config()

    markets_str = os.environ.get("POLYMARKET_MARKETS", "")
    if markets_str:
        config.markets.extend(parse_markets(markets_str))

    # Trading overrides
    if os.environ.get("PROFIT_THRESHOLD"):
        config.trading.profit_threshold = float(os.environ["PROFIT_THRESHOLD"])
    if os.environ.get("MIN_TRADE_SIZE"):
        config.trading.min_trade_size = float(os.environ["MIN_TRADE_SIZE"])
    if os.environ.get("MAX_TRADE_SIZE"):
        config.trading.max_trade_size = float(os.environ["MAX_TRADE_SIZE"])
    if os.environ.get("SAFETY_FACTOR"):
        config.trading.safety_factor = float(os.environ["SAFETY_FACTOR"])
    if os.environ.get("IMBALANCE_THRESHOLD"):
        config.trading.imbalance_threshold = float(os.environ["IMBALANCE_THRESHOLD"])
        config.rebalancer.imbalance_threshold = config.trading.imbalance_threshold
    if os.environ.get("ORDER_TYPE"):
        config.trading.order_type = os.environ["ORDER_TYPE"].upper()
    if _env_bool("AUTO_EXECUTE") is not None:
        config.trading.auto_execute = _env_bool("AUTO_EXECUTE")
    if _env_bool("AUTO_FIX_IMBALANCE") is not None:
        config.trading.auto_fix_imbalance = _env_bool("AUTO_FIX_IMBALANCE")
    if _env_bool("CLEAR_ON_STOP") is not None:
        config.trading.clear_on_stop = _env_bool("CLEAR_ON_STOP")

    # Rebalancer overrides
    if _env_bool("REBALANCER_ENABLED") is not None:
        config.rebalancer.enabled = _env_bool("REBALANCER_ENABLED")
    if os.environ.get("MIN_USDC_RATIO"):
        config.rebalancer.min_usdc_ratio = float(os.environ["MIN_USDC_RATIO"])
    if os.environ.get("TARGET_USDC_RATIO"):
        config.rebalancer.target_usdc_ratio = float(os.environ["TARGET_USDC_RATIO"])
    if os.environ.get("MAX_USDC_RATIO"):
        config.rebalancer.max_usdc_ratio = float(os.environ["MAX_USDC_RATIO"])
    if os.environ.get("REBALANCE_INTERVAL_SECONDS"):
        config.rebalancer.rebalance_interval_seconds = float(os.environ["REBALANCE_INTERVAL_SECONDS"])
    if os.environ.get("REBALANCE_COOLDOWN_SECONDS"):
        config.rebalancer.rebalance_cooldown_seconds = float(os.environ["REBALANCE_COOLDOWN_SECONDS"])

    # Scanner overrides
    if os.environ.get("MIN_VOLUME_24H"):
        config.scanner.min_volume_24h = float(os.environ["MIN_VOLUME_24H"])
    if os.environ.get("SCAN_LIMIT"):
        config.scanner.limit = int(os.environ["SCAN_LIMIT"])

    return config
