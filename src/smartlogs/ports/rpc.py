# smartlogs/ports/rpc.py
from __future__ import annotations

from typing import Any, Protocol, Sequence
from ..domain.models import RawLog


class ChainRPC(Protocol):
    """Port defining the contract for an Ethereum JSON-RPC node client."""

    async def chain_id(self) -> int:
        """Return the chain id the node serves."""

    async def block_number(self) -> int:
        """Return the current chain head as an integer."""

    async def get_logs(
        self,
        addresses: Sequence[str],
        topics0: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        """Return logs for [from_block, to_block] inclusive, in node order."""

    async def get_transactions(self, hashes: Sequence[str]) -> list[dict[str, Any] | None]:
        """One batched round trip; result i answers hashes[i], None when the node had no entry."""

    async def get_blocks(self, numbers: Sequence[int]) -> list[dict[str, Any] | None]:
        """One batched round trip; result i answers numbers[i], None when the node had no entry."""

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Return the receipt with its `logs` list, or None for an unknown hash."""

    async def aclose(self) -> None:
        """Release the underlying transport."""
