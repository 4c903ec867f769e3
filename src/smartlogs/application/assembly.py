from __future__ import annotations
import logging
from typing import Any, Mapping, Sequence

from ..domain.models import DecodedCall, FormattedFilter, Log, RawLog
from ..domain.value_types import AbiItem
from ..ports.codec import AbiCodec

log = logging.getLogger(__name__)


def decode_function(codec: AbiCodec, function_abi: AbiItem, tx: Mapping[str, Any]) -> DecodedCall:
    """
    Decode the call data of `tx` against `function_abi`. When the selector does
    not match, the actual leading 4 bytes are recorded with empty inputs.
    """
    data = str(tx.get("input") or tx.get("data") or "0x").lower()
    selector = codec.encode_function_signature(function_abi).lower()
    if data.startswith(selector):
        inputs = codec.decode_function_input("0x" + data[len(selector):], function_abi.get("inputs", []))
        return DecodedCall(signature=selector, name=function_abi.get("name"), inputs=inputs)
    return DecodedCall(signature=data[:10], name=None, inputs={})


def _build_log(
    ff: FormattedFilter,
    raw: RawLog,
    codec: AbiCodec,
    transactions: Mapping[str, Mapping[str, Any]],
    blocks: Mapping[int, Mapping[str, Any]],
    filter_id: str | None,
) -> Log:
    tx = transactions.get(raw.transaction_hash.lower())
    block = blocks.get(raw.block_number) if raw.block_number is not None else None
    function = None
    if ff.function_abi is not None and tx is not None:
        function = decode_function(codec, ff.function_abi, tx)
    return Log(
        filter_id=ff.id if filter_id is None else filter_id,
        log_index=raw.log_index,
        transaction_hash=raw.transaction_hash,
        address=ff.address,
        event=codec.decode_event_log(raw, ff.event_abi),
        function=function,
        transaction=ff.include.transaction.resolve(tx),
        block=ff.include.block.resolve(block),
    )


def sort_key(entry: Log) -> tuple[int, int, int] | None:
    tx = entry.transaction or {}
    key = (tx.get("blockNumber"), tx.get("transactionIndex"), entry.log_index)
    if all(isinstance(k, int) and not isinstance(k, bool) for k in key):
        return key  # type: ignore[return-value]
    return None


def sort_logs(logs: Sequence[Log]) -> list[Log]:
    """Sort by (block, tx index, log index) only if every entry has those numbers."""
    keys = [sort_key(l) for l in logs]
    if any(k is None for k in keys):
        if logs:
            log.debug("ordering fields missing on some logs, keeping node order for %d logs", len(logs))
        return list(logs)
    return [l for _, l in sorted(zip(keys, logs), key=lambda kv: kv[0])]


def assemble_logs(
    formatted: Sequence[FormattedFilter],
    raw_logs: Sequence[RawLog],
    codec: AbiCodec,
    transactions: Mapping[str, Mapping[str, Any]] | None = None,
    blocks: Mapping[int, Mapping[str, Any]] | None = None,
    *,
    filter_id: str | None = None,
) -> list[Log]:
    """
    Match raw logs to filters (address + topic-0), decode and enrich them, and
    return the ordered batch. `filter_id` overrides the stamped filter id.
    """
    transactions = transactions or {}
    blocks = blocks or {}
    out: list[Log] = []
    for ff in formatted:
        addr, sig = ff.address.lower(), ff.event_signature.lower()
        for raw in raw_logs:
            if raw.address.lower() != addr or (raw.topic0 or "").lower() != sig:
                continue
            out.append(_build_log(ff, raw, codec, transactions, blocks, filter_id))
    return sort_logs(out)
