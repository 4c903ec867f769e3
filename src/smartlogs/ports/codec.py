# smartlogs/ports/codec.py
from __future__ import annotations

from typing import Any, Protocol, Sequence
from ..domain.models import DecodedCall, RawLog
from ..domain.value_types import AbiItem, Address, Selector, Topic0


class AbiCodec(Protocol):
    """Port for address normalization, signature hashing and ABI decoding."""

    def checksum_address(self, address: str) -> Address: ...

    def encode_event_signature(self, event_abi: AbiItem) -> Topic0: ...

    def encode_function_signature(self, function_abi: AbiItem) -> Selector: ...

    def decode_event_log(self, raw_log: RawLog, event_abi: AbiItem) -> DecodedCall:
        """Decode indexed inputs from topics and the rest from data."""

    def decode_function_input(self, data: str, inputs_abi: Sequence[AbiItem]) -> dict[str, Any]:
        """Decode call data with the selector already stripped."""
