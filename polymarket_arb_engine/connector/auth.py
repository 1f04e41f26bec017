"""
Authentication for the Polymarket CLOB API.
L1 headers are EIP-712 signatures by the wallet key; L2 headers are HMACs with
the derived API credentials.
"""

import base64
import hashlib
import hmac
import time
from typing import Optional, TYPE_CHECKING

from eth_account import Account
from eth_account.messages import encode_typed_data

from ..errors import InvalidInputError

if TYPE_CHECKING:
    from ..config import Config


class AuthManager:
    """Holds the wallet key and API credentials, produces request headers."""

    CLOB_AUTH_TYPES = {
        "ClobAuth": [
            {"name": "address", "type": "address"},
            {"name": "timestamp", "type": "string"},
            {"name": "nonce", "type": "uint256"},
            {"name": "message", "type": "string"},
        ]
    }

    AUTH_MESSAGE = "This message attests that I control the given wallet"

    def __init__(
        self,
        private_key: str,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        api_passphrase: Optional[str] = None,
        chain_id: int = 137,
    ):
        if not private_key:
            raise InvalidInputError("POLYMARKET_PRIVATE_KEY is required")
        self.private_key = private_key
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_passphrase = api_passphrase
        self.chain_id = chain_id

    @classmethod
    def from_config(cls, config: "Config") -> "AuthManager":
        return cls(
            private_key=config.private_key,
            api_key=config.api_key,
            api_secret=config.api_secret,
            api_passphrase=config.api_passphrase,
            chain_id=config.connection.chain_id,
        )

    @property
    def domain(self) -> dict:
        return {"name": "ClobAuthDomain", "version": "1", "chainId": self.chain_id}

    def get_l1_headers(self, nonce: int = 0) -> dict[str, str]:
        """EIP-712 signed headers, used to create or derive API credentials."""
        timestamp = str(int(time.time()))

        typed_data = {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                ],
                **self.CLOB_AUTH_TYPES,
            },
            "primaryType": "ClobAuth",
            "domain": self.domain,
            "message": {
                "address": self.address,
                "timestamp": timestamp,
                "nonce": nonce,
                "message": self.AUTH_MESSAGE,
            },
        }

        signable = encode_typed_data(full_message=typed_data)
        signed = self.account.sign_message(signable)

        return {
            "POLY_ADDRESS": self.address,
            "POLY_SIGNATURE": "0x" + signed.signature.hex().removeprefix("0x"),
            "POLY_TIMESTAMP": timestamp,
            "POLY_NONCE": str(nonce),
        }

    def get_l2_headers(self, method: str, path: str, body: str = "") -> dict[str, str]:
        """HMAC-SHA256 headers for authenticated requests."""
        if not self.has_l2_credentials():
            raise InvalidInputError("API credentials required for L2 authentication")

        timestamp = str(int(time.time()))
        message = timestamp + method.upper() + path + body

        secret_bytes = base64.urlsafe_b64decode(self.api_secret)
        digest = hmac.new(secret_bytes, message.encode("utf-8"), hashlib.sha256).digest()

        return {
            "POLY_ADDRESS": self.address,
            "POLY_SIGNATURE": base64.urlsafe_b64encode(digest).decode("utf-8"),
            "POLY_TIMESTAMP": timestamp,
            "POLY_API_KEY": self.api_key,
            "POLY_PASSPHRASE": self.api_passphrase,
        }

    def set_api_credentials(self, api_key: str, api_secret: str, api_passphrase: str) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_passphrase = api_passphrase

    def has_l2_credentials(self) -> bool:
        return all([self.api_key, self.api_secret, self.api_passphrase])
