"""
ABI encoding for the SessionKeyManager and BlogHub contracts.

Only the handful of functions this package calls are described here; the
contracts themselves live elsewhere.
"""

from typing import Any, Iterable, List, Optional, Sequence

from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address

from amberink.config import settings
from amberink.core.wallet.models import SessionKeyRecord, normalize_selector


def function_selector(signature: str) -> str:
    """4-byte selector of a canonical function signature, 0x-prefixed."""
    return "0x" + keccak(text=signature)[:4].hex()


def encode_call(selector: str, types: Sequence[str], args: Sequence[Any]) -> str:
    """Selector followed by ABI-encoded arguments, as 0x-prefixed hex."""
    return normalize_selector(selector) + encode(list(types), list(args)).hex()


def selector_bytes(selector: str) -> bytes:
    return bytes.fromhex(normalize_selector(selector)[2:])


class SessionKeyManagerContract:
    """Reads and call-data builders for the SessionKeyManager."""

    REGISTER_SIGNATURE = "registerSessionKey(address,uint48,uint48,address,bytes4[],uint256)"
    REVOKE_SIGNATURE = "revokeSessionKey(address)"
    GET_DATA_SIGNATURE = "getSessionKeyData(address,address)"
    RECORD_TYPE = "(address,uint48,uint48,address,bytes4[],uint256,uint256,uint256)"

    def __init__(self, chain, address: Optional[str] = None):
        self.chain = chain
        self.address = to_checksum_address(address or settings.session_key_manager_address)

    async def get_record(self, owner: str, session_key: str) -> SessionKeyRecord:
        """Current on-chain record for (owner, session key). Never cached."""
        data = encode_call(
            function_selector(self.GET_DATA_SIGNATURE),
            ["address", "address"],
            [to_checksum_address(owner), to_checksum_address(session_key)],
        )
        raw = await self.chain.call(self.address, data)
        (values,) = decode([self.RECORD_TYPE], raw)
        return SessionKeyRecord.from_abi(values)

    def encode_register(
        self,
        session_key: str,
        valid_after: int,
        valid_until: int,
        target: str,
        selectors: Iterable[str],
        spending_limit: int,
    ) -> str:
        return encode_call(
            function_selector(self.REGISTER_SIGNATURE),
            ["address", "uint48", "uint48", "address", "bytes4[]", "uint256"],
            [
                to_checksum_address(session_key),
                valid_after,
                valid_until,
                to_checksum_address(target),
                [selector_bytes(s) for s in selectors],
                spending_limit,
            ],
        )

    def encode_revoke(self, session_key: str) -> str:
        return encode_call(
            function_selector(self.REVOKE_SIGNATURE),
            ["address"],
            [to_checksum_address(session_key)],
        )


def encode_delegated_call(
    action_name: str,
    inner_types: List[str],
    inner_args: List[Any],
    owner: str,
    session_key: str,
    deadline: int,
    signature: str,
) -> str:
    """
    Call data for ``<action>WithSessionKey(owner, sessionKey, ...inner, deadline, signature)``.
    """
    types = ["address", "address", *inner_types, "uint256", "bytes"]
    signature_text = f"{action_name}WithSessionKey({','.join(types)})"
    sig_bytes = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    return encode_call(
        function_selector(signature_text),
        types,
        [to_checksum_address(owner), to_checksum_address(session_key), *inner_args, deadline, sig_bytes],
    )
