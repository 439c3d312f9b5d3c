"""
EIP-712 signing of delegated session key operations.

The SessionKeyManager verifies a SessionOperation signed by the session key
before forwarding the call to BlogHub. A signature binds one nonce, so it is
single-use once that nonce is consumed.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import to_checksum_address

from amberink.config import settings
from amberink.constants import (
    EIP712_DOMAIN_NAME,
    EIP712_DOMAIN_VERSION,
    SIGNATURE_DEADLINE_SECONDS,
)
from amberink.core.wallet.models import SessionKey

from .actions import DelegatedAction
from .contracts import selector_bytes

SESSION_OPERATION_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "SessionOperation": [
        {"name": "owner", "type": "address"},
        {"name": "sessionKey", "type": "address"},
        {"name": "target", "type": "address"},
        {"name": "selector", "type": "bytes4"},
        {"name": "callData", "type": "bytes"},
        {"name": "value", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ],
}


@dataclass
class DelegatedAuthorization:
    """One signed delegated call. Not persisted."""
    owner: str
    session_key: str
    target: str
    selector: str
    call_data: str
    value: int
    nonce: int
    deadline: int
    signature: str = ""


class DelegatedSigner:
    """Builds and signs SessionOperation payloads under a fixed domain."""

    def __init__(
        self,
        chain_id: Optional[int] = None,
        verifying_contract: Optional[str] = None,
        target: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.chain_id = chain_id or settings.chain_id
        self.verifying_contract = to_checksum_address(
            verifying_contract or settings.session_key_manager_address
        )
        self.target = to_checksum_address(target or settings.blog_hub_address)
        self._clock = clock

    def domain(self) -> Dict[str, Any]:
        return {
            "name": EIP712_DOMAIN_NAME,
            "version": EIP712_DOMAIN_VERSION,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }

    def typed_data(self, auth: DelegatedAuthorization) -> Dict[str, Any]:
        call_data = auth.call_data[2:] if auth.call_data.startswith("0x") else auth.call_data
        return {
            "types": SESSION_OPERATION_TYPES,
            "primaryType": "SessionOperation",
            "domain": self.domain(),
            "message": {
                "owner": to_checksum_address(auth.owner),
                "sessionKey": to_checksum_address(auth.session_key),
                "target": to_checksum_address(auth.target),
                "selector": selector_bytes(auth.selector),
                "callData": bytes.fromhex(call_data),
                "value": auth.value,
                "nonce": auth.nonce,
                "deadline": auth.deadline,
            },
        }

    def sign(self, session_key: SessionKey, action: DelegatedAction, nonce: int) -> DelegatedAuthorization:
        """
        Sign ``action`` for execution at ``nonce``.

        The nonce must come straight from the on-chain record; the deadline
        is measured from this call, not from when the action was requested.
        """
        auth = DelegatedAuthorization(
            owner=session_key.owner,
            session_key=session_key.address,
            target=self.target,
            selector=action.selector,
            call_data=action.encode_call_data(),
            value=action.value,
            nonce=nonce,
            deadline=int(self._clock()) + SIGNATURE_DEADLINE_SECONDS,
        )
        signed = Account.from_key(session_key.private_key).sign_typed_data(
            full_message=self.typed_data(auth)
        )
        auth.signature = "0x" + bytes(signed.signature).hex()
        return auth

    def recover_signer(self, auth: DelegatedAuthorization) -> str:
        """Address that produced ``auth.signature``; the contract performs the same check."""
        message = encode_typed_data(full_message=self.typed_data(auth))
        return Account.recover_message(message, signature=auth.signature)
