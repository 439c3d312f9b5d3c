"""
JSON-RPC client for the settlement chain.

This is the boundary where transport and node errors enter the package:
every failure leaves here already classified into the typed hierarchy.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from ..config import settings
from ..core.recovery.errors import (
    AmberInkError,
    ContractRevertedError,
    TimeoutError,
    classify_error,
)
from ..core.recovery.strategies import RetryConfig, RetryStrategy

logger = logging.getLogger(__name__)

# Methods that never change chain state and can be retried safely
_READ_METHODS = frozenset({
    "eth_getBalance",
    "eth_call",
    "eth_getBlockByNumber",
    "eth_gasPrice",
    "eth_maxPriorityFeePerGas",
    "eth_estimateGas",
    "eth_getTransactionCount",
    "eth_getTransactionReceipt",
    "eth_chainId",
})


class ChainClient:
    """Async JSON-RPC client with fee estimation and local-account sending"""

    name = "rpc"

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        chain_id: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryStrategy] = None,
    ):
        self.rpc_url = rpc_url or settings.rpc_url
        self.chain_id = chain_id or settings.chain_id
        self._client = client or httpx.AsyncClient(timeout=float(settings.request_timeout_seconds))
        self._retry = retry or RetryStrategy(RetryConfig(max_attempts=3), logger=logger)
        self._request_id = 0

    async def __aenter__(self) -> "ChainClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }
        try:
            response = await self._client.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
        except Exception as e:
            raise classify_error(e) from e

        if "error" in data:
            error = data["error"]
            raw = f"RPC error {error.get('code')}: {error.get('message')} data={error.get('data')}"
            raise classify_error(RuntimeError(raw))

        return data["result"]

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        params = params or []
        if method in _READ_METHODS:
            return await self._retry.execute(lambda: self._post(method, params))
        return await self._post(method, params)

    # Reads

    async def get_balance(self, address: str) -> int:
        result = await self.request("eth_getBalance", [to_checksum_address(address), "latest"])
        return int(result, 16)

    async def get_latest_block(self) -> Dict[str, Any]:
        return await self.request("eth_getBlockByNumber", ["latest", False])

    async def get_block_timestamp(self) -> int:
        """Timestamp of the latest block; the clock every validity check uses."""
        block = await self.get_latest_block()
        return int(block["timestamp"], 16)

    async def call(self, to: str, data: str, from_address: Optional[str] = None) -> bytes:
        tx: Dict[str, Any] = {"to": to_checksum_address(to), "data": data}
        if from_address:
            tx["from"] = to_checksum_address(from_address)
        result = await self.request("eth_call", [tx, "latest"])
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    async def gas_price(self) -> int:
        return int(await self.request("eth_gasPrice"), 16)

    async def estimate_fees(self) -> Tuple[int, int]:
        """
        EIP-1559 fees as (max_fee_per_gas, max_priority_fee_per_gas).

        max fee is twice the latest base fee plus the priority fee. Raises
        when the chain has no base fee.
        """
        block = await self.get_latest_block()
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            raise AmberInkError("Chain does not support EIP-1559 fees")
        priority = int(await self.request("eth_maxPriorityFeePerGas"), 16)
        return 2 * int(base_fee, 16) + priority, priority

    async def max_fee_per_gas(self) -> int:
        """Worst-case per-gas price: EIP-1559 max fee, else the legacy gas price."""
        try:
            max_fee, _ = await self.estimate_fees()
            return max_fee
        except AmberInkError as e:
            logger.debug(f"EIP-1559 fee estimate unavailable ({e.code.value}), using gas price")
            return await self.gas_price()

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self.request("eth_estimateGas", [_to_rpc_tx(tx)]), 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.request("eth_getTransactionCount", [to_checksum_address(address), block]), 16)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.request("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 120.0,
        poll_interval: float = 1.0,
    ) -> Dict[str, Any]:
        """
        Poll until the transaction is mined.

        Raises:
            ContractRevertedError: Receipt status is 0
            TimeoutError: Not mined within ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt is not None:
                if int(receipt.get("status", "0x1"), 16) == 0:
                    raise ContractRevertedError(
                        f"Transaction {tx_hash} reverted",
                        tx_hash=tx_hash,
                    )
                return receipt
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Transaction {tx_hash} not mined after {timeout:.0f}s", tx_hash=tx_hash)
            await asyncio.sleep(poll_interval)

    # Writes

    async def send_raw_transaction(self, raw: bytes) -> str:
        return await self.request("eth_sendRawTransaction", ["0x" + raw.hex()])

    async def send_transaction(self, account: LocalAccount, tx: Dict[str, Any]) -> str:
        """
        Fill, sign and broadcast a transaction from a local account.

        Missing ``nonce``, ``gas`` and fee fields are filled from the node.
        A ``gasPrice`` in ``tx`` forces a legacy transaction.
        """
        filled: Dict[str, Any] = {
            "to": to_checksum_address(tx["to"]),
            "value": int(tx.get("value", 0)),
            "data": tx.get("data", "0x"),
            "chainId": self.chain_id,
        }
        filled["nonce"] = tx.get("nonce")
        if filled["nonce"] is None:
            filled["nonce"] = await self.get_transaction_count(account.address)
        filled["gas"] = tx.get("gas")
        if filled["gas"] is None:
            filled["gas"] = await self.estimate_gas({**filled, "from": account.address})

        if "gasPrice" in tx:
            filled["gasPrice"] = int(tx["gasPrice"])
        else:
            try:
                max_fee, priority = await self.estimate_fees()
                filled["maxFeePerGas"] = max_fee
                filled["maxPriorityFeePerGas"] = priority
            except AmberInkError:
                filled["gasPrice"] = await self.gas_price()

        signed = account.sign_transaction(filled)
        tx_hash = await self.send_raw_transaction(signed.raw_transaction)
        logger.info(f"Sent tx {tx_hash} from {account.address} to {filled['to']}")
        return tx_hash


def _to_rpc_tx(tx: Dict[str, Any]) -> Dict[str, Any]:
    """Hex-encode integer fields for eth_estimateGas/eth_call."""
    out: Dict[str, Any] = {}
    for key in ("from", "to"):
        if tx.get(key):
            out[key] = to_checksum_address(tx[key])
    if tx.get("data"):
        out["data"] = tx["data"]
    if tx.get("value"):
        out["value"] = hex(int(tx["value"]))
    if tx.get("gasPrice"):
        out["gasPrice"] = hex(int(tx["gasPrice"]))
    return out
