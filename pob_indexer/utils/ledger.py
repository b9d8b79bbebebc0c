"""
Ledger Read Surface
===================

Thin async wrapper around web3's AsyncWeb3 that turns every contract read
into a ReadResult instead of raising or silently defaulting.

Failure classes:
- NOT_SUPPORTED: the call reverted or its output could not be decoded
                 (function missing on an older contract version). Callers
                 use the documented default for the field.
- TRANSIENT:     anything else (timeouts, connection errors, RPC errors).
                 Callers keep the previously known value.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from eth_abi.exceptions import InsufficientDataBytes
from web3 import AsyncWeb3, Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError
from web3.providers.async_rpc import AsyncHTTPProvider

from pob_indexer.utils.abis import ABIS, EVENT_SIGNATURES

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Errors that mean "this contract does not implement that call"
_NOT_SUPPORTED_ERRORS = (ContractLogicError, BadFunctionCallOutput, InsufficientDataBytes)


class ReadError(str, Enum):
    NOT_SUPPORTED = "not_supported"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class ReadResult:
    """Outcome of one remote read: a value, or a classified failure"""

    value: Any = None
    error: Optional[ReadError] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, value) -> "ReadResult":
        return cls(value=value)

    @classmethod
    def not_supported(cls, detail: str = "") -> "ReadResult":
        return cls(error=ReadError.NOT_SUPPORTED, detail=detail)

    @classmethod
    def transient(cls, detail: str = "") -> "ReadResult":
        return cls(error=ReadError.TRANSIENT, detail=detail)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_transient(self) -> bool:
        return self.error == ReadError.TRANSIENT

    @property
    def is_not_supported(self) -> bool:
        return self.error == ReadError.NOT_SUPPORTED

    def unwrap_or(self, default):
        return self.value if self.ok else default

    def map(self, fn: Callable[[Any], Any]) -> "ReadResult":
        """Apply fn to a successful value; failures pass through untouched"""
        if not self.ok:
            return self
        return ReadResult.success(fn(self.value))


def classify_error(error: Exception) -> ReadResult:
    if isinstance(error, _NOT_SUPPORTED_ERRORS):
        return ReadResult.not_supported(f"{type(error).__name__}: {error}")
    return ReadResult.transient(f"{type(error).__name__}: {error}")


def normalize_address(value) -> Optional[str]:
    """Lowercase an address; the zero address and empty values become None"""
    if not value:
        return None
    address = str(value).lower()
    if address == ZERO_ADDRESS:
        return None
    return address


def _checksum_args(args) -> List:
    converted = []
    for arg in args:
        if isinstance(arg, str) and arg.startswith("0x") and len(arg) == 42:
            converted.append(Web3.to_checksum_address(arg))
        elif isinstance(arg, (list, tuple)):
            converted.append(_checksum_args(arg))
        else:
            converted.append(arg)
    return converted


class LedgerReader:
    """
    Read-only access to one network's contracts.

    Contract objects are cached per (address, kind) for the reader's lifetime.
    """

    def __init__(self, w3: AsyncWeb3, chain_id: int):
        self.w3 = w3
        self.chain_id = chain_id
        self._contracts: Dict[tuple, Any] = {}

    @classmethod
    def for_network(cls, network, timeout_seconds: Optional[float] = None) -> "LedgerReader":
        if timeout_seconds is None:
            from pob_indexer.config import RPC_TIMEOUT_SECONDS
            timeout_seconds = RPC_TIMEOUT_SECONDS

        provider = AsyncHTTPProvider(
            network.rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout_seconds)},
        )
        return cls(AsyncWeb3(provider), network.chain_id)

    def _contract(self, address: str, kind: str):
        key = (address.lower(), kind)
        contract = self._contracts.get(key)
        if contract is None:
            contract = self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=ABIS[kind])
            self._contracts[key] = contract
        return contract

    async def call(self, address: str, kind: str, fn: str, *args) -> ReadResult:
        """
        Call a view function.

        Args:
            address: Contract address
            kind: ABI name ("registry", "jury", "cert_nft", "middleware")
            fn: Function name
            *args: Function arguments (addresses are checksummed)
        """
        try:
            contract = self._contract(address, kind)
            value = await getattr(contract.functions, fn)(*_checksum_args(args)).call()
            return ReadResult.success(value)
        except Exception as e:
            result = classify_error(e)
            logger.debug(f"chain {self.chain_id} {kind}.{fn}{tuple(args)} failed: {result.detail}")
            return result

    async def has_code(self, address: str) -> ReadResult:
        try:
            code = await self.w3.eth.get_code(Web3.to_checksum_address(address))
            return ReadResult.success(len(code) > 0)
        except Exception as e:
            return ReadResult.transient(f"{type(e).__name__}: {e}")

    async def block_number(self) -> ReadResult:
        try:
            return ReadResult.success(int(await self.w3.eth.block_number))
        except Exception as e:
            return ReadResult.transient(f"{type(e).__name__}: {e}")

    async def get_events(self, address: str, kind: str, event: str, from_block: int, to_block: int) -> ReadResult:
        """
        Fetch and decode one event type emitted by address in [from_block, to_block].

        Returns:
            ReadResult with a list of {"event", "block_number", **args} dicts.
            Address args are lowercased.
        """
        try:
            contract = self._contract(address, kind)
            topic = Web3.to_hex(Web3.keccak(text=EVENT_SIGNATURES[event]))
            logs = await self.w3.eth.get_logs({
                "address": Web3.to_checksum_address(address),
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [topic],
            })
            decoded = []
            for log in logs:
                entry = getattr(contract.events, event)().process_log(log)
                args = {
                    k: (v.lower() if isinstance(v, str) and v.startswith("0x") else v)
                    for k, v in dict(entry["args"]).items()
                }
                decoded.append({"event": event, "block_number": entry["blockNumber"], **args})
            return ReadResult.success(decoded)
        except Exception as e:
            return ReadResult.transient(f"{type(e).__name__}: {e}")
