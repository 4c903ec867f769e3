from __future__ import annotations
import logging

from ..domain.models import BlockRange, IndexerState, Options
from ..ports.rpc import ChainRPC

log = logging.getLogger(__name__)


def plan_range(
    head: int,
    latest_processed_block: int,
    options: Options,
    explicit_from: int | None = None,
) -> BlockRange | None:
    """
    Next [start, end] window, or None when no newly confirmed block exists yet.

    Explicit starts are single-shot: bounded by the head and max_blocks, never
    flagged for catch-up. Automatic windows stay `confirmation_blocks` behind the
    head and are clamped to `max_blocks`, in which case the caller skips its delay.
    """
    if explicit_from is not None:
        start = explicit_from
        end = min(head, start + options.max_blocks)
        return BlockRange(start, end) if end >= start else None

    start = latest_processed_block + 1
    end = head - options.confirmation_blocks
    if end - start > options.max_blocks:
        log.warning(
            "Max blocks number exceeded (%d blocks), iteration delay is ignored", end - start
        )
        return BlockRange(start, start + options.max_blocks, ignore_delay=True)
    if end < start:
        return None
    return BlockRange(start, end)


async def next_range(rpc: ChainRPC, state: IndexerState, explicit_from: int | None = None) -> BlockRange | None:
    head = await rpc.block_number()
    return plan_range(head, state.latest_processed_block, state.options, explicit_from)
