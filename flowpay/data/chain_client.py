"""JSON-RPC chain gateway: token balances, gas price and intent execution.

Reads are unauthenticated. `execute_intent` signs with the execution wallet
configured via FLOWPAY_EXECUTION_PRIVATE_KEY; the key is never logged.
"""

from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Any

from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound

from flowpay.config import get_settings
from flowpay.data.models import TxReceipt

logger = logging.getLogger(__name__)


ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
]

INTENT_CONTRACT_ABI = [
    {
        "inputs": [{"name": "intentId", "type": "uint256"}],
        "name": "executeIntent",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class ChainError(Exception):
    """Revert, timeout, RPC or configuration failure on the chain gateway."""


class ChainGateway:
    """Synchronous web3 wrapper. Callers run it off the event loop."""

    def __init__(self, w3: Web3 | None = None) -> None:
        """Initialize chain gateway.

        Args:
            w3: Pre-built Web3 instance. Defaults to an HTTPProvider on FLOWPAY_RPC_URL.
        """
        self.settings = get_settings()
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(
                self.settings.rpc_url,
                request_kwargs={"timeout": self.settings.rpc_timeout_seconds},
            )
        )
        self._decimals: dict[str, int] = {}
        # One submission at a time so concurrent executions never share a nonce.
        self._submit_lock = threading.Lock()
        self._account = (
            Account.from_key(self.settings.execution_private_key)
            if self.settings.execution_private_key
            else None
        )

    def get_token_balance(self, token_address: str, wallet_address: str) -> Decimal:
        """ERC-20 balance of `wallet_address`, in whole-token units."""
        try:
            token = self.w3.eth.contract(
                address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
            )
            raw = token.functions.balanceOf(Web3.to_checksum_address(wallet_address)).call()
            decimals = self._token_decimals(token_address, token)
        except ChainError:
            raise
        except Exception as e:
            raise ChainError(f"Balance read failed for {token_address}: {e}") from e
        return Decimal(int(raw)).scaleb(-decimals)

    def get_native_balance(self, wallet_address: str) -> int:
        """Native coin balance in wei."""
        try:
            return int(self.w3.eth.get_balance(Web3.to_checksum_address(wallet_address)))
        except Exception as e:
            raise ChainError(f"Native balance read failed: {e}") from e

    def get_gas_price(self) -> int:
        """Current gas price in wei."""
        try:
            return int(self.w3.eth.gas_price)
        except Exception as e:
            raise ChainError(f"Gas price read failed: {e}") from e

    def execute_intent(self, on_chain_id: int | None) -> TxReceipt:
        """Submit `executeIntent(on_chain_id)` and wait for it to be mined.

        Raises:
            ChainError: On missing configuration, RPC failure, timeout or revert.
        """
        if on_chain_id is None:
            raise ChainError("Intent has no on-chain reference id")
        if self._account is None or not self.settings.intent_contract_address:
            raise ChainError("On-chain execution is not configured")

        try:
            contract = self.w3.eth.contract(
                address=Web3.to_checksum_address(self.settings.intent_contract_address),
                abi=INTENT_CONTRACT_ABI,
            )
            with self._submit_lock:
                nonce = self.w3.eth.get_transaction_count(self._account.address, "pending")
                tx = contract.functions.executeIntent(int(on_chain_id)).build_transaction(
                    {
                        "from": self._account.address,
                        "nonce": nonce,
                        "chainId": self.settings.chain_id,
                    }
                )
                signed = self._account.sign_transaction(tx)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)

            logger.info(
                f"Submitted executeIntent({on_chain_id})",
                extra={"on_chain_id": on_chain_id, "tx_hash": Web3.to_hex(tx_hash)},
            )
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.settings.receipt_timeout_seconds
            )
        except Exception as e:
            raise ChainError(str(e) or e.__class__.__name__) from e

        if int(receipt["status"]) != 1:
            raise ChainError(f"Transaction reverted: {Web3.to_hex(receipt['transactionHash'])}")

        return self._parse_receipt(receipt)

    def get_transaction_receipt(self, tx_hash: str) -> TxReceipt | None:
        """Receipt of a previously submitted transaction, None while pending."""
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise ChainError(f"Receipt lookup failed: {e}") from e
        return self._parse_receipt(receipt)

    def _token_decimals(self, token_address: str, token: Any) -> int:
        key = token_address.lower()
        if key not in self._decimals:
            self._decimals[key] = int(token.functions.decimals().call())
        return self._decimals[key]

    @staticmethod
    def _parse_receipt(receipt: Any) -> TxReceipt:
        return TxReceipt(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            gas_used=int(receipt["gasUsed"]),
            gas_price=int(receipt.get("effectiveGasPrice") or 0),
            block_number=int(receipt["blockNumber"]),
        )
