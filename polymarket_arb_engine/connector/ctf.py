"""
Conditional Token Framework client.

Split, merge and redeem on Polygon through web3, plus wallet balances read
straight from the chain. Standard markets go through the CTF contract;
negative-risk markets go through the NegRiskAdapter.

web3 calls block, so each one runs in a worker thread. Transactions are sent
once and never retried here.
"""

import asyncio
from decimal import Decimal
from typing import Any, Optional, TYPE_CHECKING

from eth_account import Account
from web3 import Web3

from ..errors import OnChainError, TransientFetchError
from .types import MarketInfo, OnChainResult, PositionSnapshot

if TYPE_CHECKING:
    from ..config import ConnectionConfig
    from ..monitor import Logger

# USDC.e and CTF positions both use 6 decimals
TOKEN_DECIMALS = Decimal(10 ** 6)

# Binary partition: index set 1 is outcome 0 (YES), 2 is outcome 1 (NO)
BINARY_PARTITION = [1, 2]

PARENT_COLLECTION_ID = b"\x00" * 32

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
]

CTF_ABI = [
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "id", "type": "uint256"},
        ],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "collateralToken", "type": "address"},
            {"name": "parentCollectionId", "type": "bytes32"},
            {"name": "conditionId", "type": "bytes32"},
            {"name": "partition", "type": "uint256[]"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "splitPosition",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "collateralToken", "type": "address"},
            {"name": "parentCollectionId", "type": "bytes32"},
            {"name": "conditionId", "type": "bytes32"},
            {"name": "partition", "type": "uint256[]"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "mergePositions",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "collateralToken", "type": "address"},
            {"name": "parentCollectionId", "type": "bytes32"},
            {"name": "conditionId", "type": "bytes32"},
            {"name": "indexSets", "type": "uint256[]"},
        ],
        "name": "redeemPositions",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

NEG_RISK_ADAPTER_ABI = [
    {
        "inputs": [
            {"name": "_conditionId", "type": "bytes32"},
            {"name": "_amount", "type": "uint256"},
        ],
        "name": "splitPosition",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_conditionId", "type": "bytes32"},
            {"name": "_amount", "type": "uint256"},
        ],
        "name": "mergePositions",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_conditionId", "type": "bytes32"},
            {"name": "_amounts", "type": "uint256[]"},
        ],
        "name": "redeemPositions",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def to_units(amount: Decimal) -> int:
    return int(amount * TOKEN_DECIMALS)


def from_units(units: int) -> Decimal:
    return Decimal(units) / TOKEN_DECIMALS


class CTFTokenClient:
    """TokenClient backed by the Polygon CTF contracts."""

    def __init__(
        self,
        private_key: str,
        connection: "ConnectionConfig",
        receipt_timeout_seconds: float = 120.0,
        logger: Optional["Logger"] = None,
    ):
        self.w3 = Web3(Web3.HTTPProvider(connection.polygon_rpc_url))
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.chain_id = connection.chain_id
        self.receipt_timeout = receipt_timeout_seconds
        self.logger = logger

        self.collateral_address = Web3.to_checksum_address(connection.collateral_address)
        self.collateral = self.w3.eth.contract(address=self.collateral_address, abi=ERC20_ABI)
        self.ctf = self.w3.eth.contract(
            address=Web3.to_checksum_address(connection.ctf_address),
            abi=CTF_ABI,
        )
        self.neg_risk_adapter = self.w3.eth.contract(
            address=Web3.to_checksum_address(connection.neg_risk_adapter_address),
            abi=NEG_RISK_ADAPTER_ABI,
        )

        # Learned from get_balances, which every caller reads before acting
        self._neg_risk: dict[str, bool] = {}

    def register_market(self, market: MarketInfo) -> None:
        self._neg_risk[market.condition_id] = market.neg_risk

    @staticmethod
    def _condition_bytes(condition_id: str) -> bytes:
        return bytes.fromhex(condition_id[2:] if condition_id.startswith("0x") else condition_id)

    def _send(self, operation: str, condition_id: str, call: Any) -> str:
        """Sign, send and wait for one transaction. Runs in a worker thread."""
        try:
            tx = call.build_transaction({
                "from": self.address,
                "nonce": self.w3.eth.get_transaction_count(self.address, "pending"),
                "chainId": self.chain_id,
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as e:
            raise OnChainError(
                f"{operation} failed: {e}",
                operation=operation,
                condition_id=condition_id,
            ) from e

        if receipt.get("status") != 1:
            raise OnChainError(
                f"{operation} reverted",
                operation=operation,
                condition_id=condition_id,
                details={"tx_hash": tx_hash.hex()},
            )
        return tx_hash.hex()

    def _collateral_balance(self) -> Decimal:
        return from_units(self.collateral.functions.balanceOf(self.address).call())

    def _position_balance(self, token_id: str) -> Decimal:
        return from_units(self.ctf.functions.balanceOf(self.address, int(token_id)).call())

    async def split(self, condition_id: str, amount: Decimal) -> OnChainResult:
        cid = self._condition_bytes(condition_id)
        if self._neg_risk.get(condition_id):
            call = self.neg_risk_adapter.functions.splitPosition(cid, to_units(amount))
        else:
            call = self.ctf.functions.splitPosition(
                self.collateral_address, PARENT_COLLECTION_ID, cid, BINARY_PARTITION, to_units(amount)
            )
        tx_hash = await asyncio.to_thread(self._send, "split", condition_id, call)
        if self.logger:
            self.logger.info("ctf_split", condition_id=condition_id, amount=str(amount), tx_hash=tx_hash)
        return OnChainResult(operation="split", amount=amount, tx_hash=tx_hash)

    async def merge(self, condition_id: str, token_ids: list[str], amount: Decimal) -> OnChainResult:
        cid = self._condition_bytes(condition_id)
        if self._neg_risk.get(condition_id):
            call = self.neg_risk_adapter.functions.mergePositions(cid, to_units(amount))
        else:
            call = self.ctf.functions.mergePositions(
                self.collateral_address, PARENT_COLLECTION_ID, cid, BINARY_PARTITION, to_units(amount)
            )
        tx_hash = await asyncio.to_thread(self._send, "merge", condition_id, call)
        if self.logger:
            self.logger.info("ctf_merge", condition_id=condition_id, amount=str(amount), tx_hash=tx_hash)
        return OnChainResult(operation="merge", amount=amount, tx_hash=tx_hash)

    async def redeem(self, condition_id: str, token_ids: list[str]) -> OnChainResult:
        """Redeem every held outcome token; the amount is the USDC received."""
        cid = self._condition_bytes(condition_id)

        def _redeem() -> tuple[str, Decimal]:
            before = self._collateral_balance()
            if self._neg_risk.get(condition_id):
                amounts = [to_units(self._position_balance(t)) for t in token_ids]
                call = self.neg_risk_adapter.functions.redeemPositions(cid, amounts)
            else:
                call = self.ctf.functions.redeemPositions(
                    self.collateral_address, PARENT_COLLECTION_ID, cid, BINARY_PARTITION
                )
            tx_hash = self._send("redeem", condition_id, call)
            return tx_hash, self._collateral_balance() - before

        tx_hash, received = await asyncio.to_thread(_redeem)
        if self.logger:
            self.logger.info("ctf_redeem", condition_id=condition_id, amount=str(received), tx_hash=tx_hash)
        return OnChainResult(operation="redeem", amount=received, tx_hash=tx_hash)

    async def get_balances(self, market: MarketInfo) -> PositionSnapshot:
        self.register_market(market)

        def _read() -> PositionSnapshot:
            return PositionSnapshot(
                usdc_balance=self._collateral_balance(),
                yes_tokens=self._position_balance(market.yes_token_id),
                no_tokens=self._position_balance(market.no_token_id),
                condition_id=market.condition_id,
            )

        try:
            return await asyncio.to_thread(_read)
        except Exception as e:
            raise TransientFetchError(f"Balance read failed: {e}", resource="balances") from e
