from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..core.recovery.errors import WalletNotConnectedError

# Irys tag format: {"name": ..., "value": ...}
Tag = Dict[str, str]


class WalletProvider(ABC):
    """Owner wallet capability: every method may prompt the user"""

    name: str = "wallet"

    @abstractmethod
    async def request_accounts(self) -> List[str]:
        """Return connected accounts, primary first"""
        pass

    @abstractmethod
    async def chain_id(self) -> int:
        """Chain the wallet is currently connected to"""
        pass

    @abstractmethod
    async def sign_message(self, message: str) -> str:
        """personal_sign; returns a 0x-prefixed 65-byte signature"""
        pass

    @abstractmethod
    async def sign_typed_data(self, payload: Dict[str, Any]) -> str:
        """eth_signTypedData_v4 over a full typed-data payload"""
        pass

    @abstractmethod
    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign and broadcast an owner transaction; returns the tx hash"""
        pass

    async def get_account(self) -> str:
        accounts = await self.request_accounts()
        if not accounts:
            raise WalletNotConnectedError()
        return accounts[0]


class StorageUploader(ABC):
    """Storage-network upload client (Irys bundler)"""

    token: str = "ethereum"

    @abstractmethod
    async def upload(self, data: bytes, tags: List[Tag], paid_by: Optional[str] = None) -> str:
        """Upload bytes and return the content-address transaction id"""
        pass

    @abstractmethod
    async def get_price(self, num_bytes: int) -> int:
        """Price of an upload of this size, in atomic units"""
        pass

    @abstractmethod
    async def get_loaded_balance(self) -> int:
        """Prepaid balance in atomic units"""
        pass

    @abstractmethod
    async def fund(self, amount: int) -> str:
        """Deposit atomic units into the prepaid balance; returns the funding tx id"""
        pass


class ManifestIndex(ABC):
    """Lookup of manifest generations by their Root-TX back-reference"""

    @abstractmethod
    async def latest_manifest_id(self, root_id: str) -> Optional[str]:
        """Newest manifest tagged Root-TX=root_id, or None when none exists"""
        pass
