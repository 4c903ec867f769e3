from __future__ import annotations
from typing import Iterable, Sequence

from eth_utils import keccak

from ..domain.models import Filter, FormattedFilter, UnionQuery
from ..domain.value_types import AbiItem
from ..ports.codec import AbiCodec


def format_filters(filters: Iterable[Filter], codec: AbiCodec) -> list[FormattedFilter]:
    """Checksum every address and precompute topic-0. Codec errors propagate."""
    return [
        FormattedFilter(
            filter=f,
            address=codec.checksum_address(f.address),
            event_signature=codec.encode_event_signature(f.event_abi),
        )
        for f in filters
    ]


def derive_filter_id(f: Filter, codec: AbiCodec) -> str:
    """
    Stable id for a filter defined without one: keccak over chain, checksummed
    address, topic-0, selector and tag. The same definition maps to the same id
    on every run, so stored logs keep their filter id across restarts.
    """
    selector = codec.encode_function_signature(f.function_abi) if f.function_abi else ""
    key = "|".join((
        "" if f.chain_id is None else str(f.chain_id),
        codec.checksum_address(f.address),
        codec.encode_event_signature(f.event_abi),
        selector,
        f.tag or "",
    ))
    return keccak(text=key)[:16].hex()


def union_query(formatted: Sequence[FormattedFilter]) -> UnionQuery:
    """Deduplicated addresses and topic-0s covering every filter in one getLogs call."""
    return UnionQuery(
        addresses=frozenset(f.address for f in formatted),
        topics0=frozenset(f.event_signature.lower() for f in formatted),
    )


def active_filters(filters: Iterable[Filter], chain_id: int | None) -> list[Filter]:
    """Filters pinned to another chain are left out; unpinned filters apply everywhere."""
    return [f for f in filters if f.chain_id is None or f.chain_id == chain_id]


def event_label(event_abi: AbiItem) -> str:
    """Human-readable label, e.g. `Transfer(indexed address from, indexed address to, uint256 value)`."""
    parts = [
        f"{'indexed ' if p.get('indexed') else ''}{p['type']} {p.get('name', '')}".rstrip()
        for p in event_abi.get("inputs", [])
    ]
    return f"{event_abi.get('name', '?')}({', '.join(parts)})"
