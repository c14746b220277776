"""
Wallet signers.

A signer is anything that can report its address, broadcast a validated
transaction plan on its chain, and sign EIP-712 typed data for off-chain
orders. ``LocalKeySigner`` does this with a private key held in process,
using web3's async client for the RPC side and eth_account for signing.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .types import ChainId, TransactionPlan

logger = logging.getLogger(__name__)


class Signer(Protocol):
    chain: ChainId

    async def get_address(self) -> str: ...

    async def send_transaction(self, plan: TransactionPlan) -> str: ...

    async def sign_typed_data(
        self, domain: dict[str, Any], types: dict[str, Any], message: dict[str, Any]
    ) -> str: ...


class TransactionRejected(RuntimeError):
    """Raised when a broadcast transaction is mined with a failed status."""


class LocalKeySigner:
    def __init__(
        self,
        private_key: str,
        rpc_url: str,
        chain: ChainId,
        wait_for_receipt: bool = True,
        receipt_timeout: float = 180.0,
    ) -> None:
        self.chain = chain
        self.wait_for_receipt = wait_for_receipt
        self.receipt_timeout = receipt_timeout
        self._account = Account.from_key(private_key)
        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        logger.info("Signer ready chain=%s address=%s", chain.value, self._account.address)

    @classmethod
    def from_mnemonic(cls, mnemonic: str, rpc_url: str, chain: ChainId, **kwargs: Any) -> "LocalKeySigner":
        Account.enable_unaudited_hdwallet_features()
        account = Account.from_mnemonic(mnemonic)
        return cls(account.key.hex(), rpc_url, chain, **kwargs)

    async def get_address(self) -> str:
        return self._account.address

    async def send_transaction(self, plan: TransactionPlan) -> str:
        tx: dict[str, Any] = {
            "from": self._account.address,
            "to": Web3.to_checksum_address(plan.to),
            "data": plan.data,
            "value": plan.value_wei,
            "chainId": self.chain.numeric_id,
        }
        tx["nonce"] = await self._w3.eth.get_transaction_count(self._account.address, "pending")
        tx["gas"] = await self._w3.eth.estimate_gas(tx)
        tx["gasPrice"] = await self._w3.eth.gas_price

        signed = self._account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        hex_hash = Web3.to_hex(tx_hash)
        logger.info("Broadcast tx chain=%s hash=%s", self.chain.value, hex_hash)

        if self.wait_for_receipt:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
            if receipt.get("status") != 1:
                raise TransactionRejected(f"Transaction {hex_hash} reverted")
        return hex_hash

    async def sign_typed_data(
        self, domain: dict[str, Any], types: dict[str, Any], message: dict[str, Any]
    ) -> str:
        # EIP712Domain is derived from the domain itself.
        message_types = {k: v for k, v in types.items() if k != "EIP712Domain"}
        signed = self._account.sign_typed_data(
            domain_data=domain,
            message_types=message_types,
            message_data=message,
        )
        return Web3.to_hex(signed.signature)
