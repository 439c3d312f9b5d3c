"""
Headless owner wallet backed by a local private key.

Used by the CLI and by integration setups without a browser wallet. It
implements the same capability interface a wallet extension bridge would.
"""

import logging
from typing import Any, Dict, List

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from ..core.recovery.errors import AmberInkError, classify_error
from .base import WalletProvider
from .rpc import ChainClient

logger = logging.getLogger(__name__)


def signature_hex(signature: bytes) -> str:
    return "0x" + bytes(signature).hex()


class LocalAccountWallet(WalletProvider):
    name = "local"

    def __init__(self, private_key: str, chain: ChainClient):
        self._account: LocalAccount = Account.from_key(private_key)
        self._chain = chain

    @property
    def address(self) -> str:
        return self._account.address

    async def request_accounts(self) -> List[str]:
        return [self._account.address]

    async def chain_id(self) -> int:
        return self._chain.chain_id

    async def sign_message(self, message: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=message))
        return signature_hex(signed.signature)

    async def sign_typed_data(self, payload: Dict[str, Any]) -> str:
        signed = self._account.sign_typed_data(full_message=payload)
        return signature_hex(signed.signature)

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        try:
            return await self._chain.send_transaction(self._account, tx)
        except AmberInkError:
            raise
        except Exception as e:
            raise classify_error(e) from e
