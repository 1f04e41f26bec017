"""
Polymarket YES/NO Complement Arbitrage Engine

A YES and a NO share of one binary market always settle to exactly 1 USDC
between them. When both can be bought for less than 1 (long) or sold for more
than 1 (short), counting the mirrored side of each book, the difference is
locked in. The engine scans for such markets, monitors one live, executes both
legs, rebalances USDC against paired inventory, and clears positions back to
USDC.
"""

__version__ = "0.1.0"
