from __future__ import annotations
import asyncio, json, os, uuid, pyarrow as pa, pyarrow.parquet as pq
from datetime import datetime, timezone
from typing import Any, Sequence

from ..domain.models import Log

_SCHEMA = pa.schema([
    ("filter_id", pa.string()),
    ("transaction_hash", pa.string()),
    ("log_index", pa.int64()),
    ("block_number", pa.int64()),
    ("transaction_index", pa.int64()),
    ("address", pa.string()),
    ("event_signature", pa.string()),
    ("event_name", pa.string()),
    ("event_inputs", pa.large_string()),      # JSON
    ("function_signature", pa.string()),
    ("function_name", pa.string()),
    ("function_inputs", pa.large_string()),   # JSON
    ("transaction", pa.large_string()),       # JSON
    ("block", pa.large_string()),             # JSON
])

def _json(v: Any) -> str | None:
    return None if v is None else json.dumps(v, separators=(",", ":"), default=str)

def _block_number(l: Log) -> int | None:
    if l.transaction and isinstance(l.transaction.get("blockNumber"), int):
        return l.transaction["blockNumber"]
    if l.block and isinstance(l.block.get("number"), int):
        return l.block["number"]
    return None

def _now_ts_str() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")

def logs_to_table(logs: Sequence[Log]) -> pa.Table:
    fn = [l.function for l in logs]
    return pa.Table.from_arrays(
        arrays=[
            pa.array([l.filter_id for l in logs], pa.string()),
            pa.array([l.transaction_hash for l in logs], pa.string()),
            pa.array([l.log_index for l in logs], pa.int64()),
            pa.array([_block_number(l) for l in logs], pa.int64()),
            pa.array([(l.transaction or {}).get("transactionIndex") for l in logs], pa.int64()),
            pa.array([l.address for l in logs], pa.string()),
            pa.array([l.event.signature for l in logs], pa.string()),
            pa.array([l.event.name for l in logs], pa.string()),
            pa.array([_json(l.event.inputs) for l in logs], pa.large_string()),
            pa.array([f.signature if f else None for f in fn], pa.string()),
            pa.array([f.name if f else None for f in fn], pa.string()),
            pa.array([_json(f.inputs) if f else None for f in fn], pa.large_string()),
            pa.array([_json(l.transaction) for l in logs], pa.large_string()),
            pa.array([_json(l.block) for l in logs], pa.large_string()),
        ],
        schema=_SCHEMA,
    )

class ParquetLogSink:
    """Writes every non-empty batch to its own snappy Parquet file under `root_dir`."""

    def __init__(self, root_dir: str) -> None:
        self.root = root_dir
        os.makedirs(self.root, exist_ok=True)

    def _path(self) -> str:
        return os.path.join(self.root, f"logs_{_now_ts_str()}_{uuid.uuid4().hex[:8]}.parquet")

    def _write(self, table: pa.Table) -> str:
        path = self._path()
        tmp  = path + ".tmp"
        pq.write_table(table, tmp, compression="snappy", use_dictionary=True)
        os.replace(tmp, path)
        return path

    async def write_logs(self, logs: Sequence[Log]) -> str | None:
        if not logs:
            return None
        return await asyncio.to_thread(self._write, logs_to_table(logs))
