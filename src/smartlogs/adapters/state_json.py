from __future__ import annotations
import os, json, asyncio, logging
from typing import Any, Sequence

from ..domain.models import Filter, Log, Options
from ..ports.storage import Load, Save
from .parquet_sink import ParquetLogSink

log = logging.getLogger(__name__)


class JSONStateFile:
    """Filters, options and the block cursor in one JSON document, replaced atomically."""

    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r") as f:
            return json.load(f)

    def _write(self, state: dict[str, Any]) -> None:
        tmp = self.path + ".tmp"
        with open(tmp, "w") as f:
            json.dump(state, f, indent=2, default=str)
            f.flush(); os.fsync(f.fileno())
        os.replace(tmp, self.path)

    async def read(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._read)

    async def update(self, key: str, value: Any) -> None:
        async with self._lock:
            state = await asyncio.to_thread(self._read)
            state[key] = value
            await asyncio.to_thread(self._write, state)


class LocalLoad(Load):
    def __init__(self, state: JSONStateFile) -> None:
        self.state = state

    async def filters(self) -> list[Filter]:
        return [Filter.from_dict(d) for d in (await self.state.read()).get("filters", [])]

    async def options(self) -> Options | None:
        d = (await self.state.read()).get("options")
        return None if d is None else Options.from_dict(d)

    async def block_number(self) -> int:
        return int((await self.state.read()).get("block_number", 0))


class LocalSave(Save):
    def __init__(self, state: JSONStateFile, sink: ParquetLogSink) -> None:
        self.state = state
        self.sink = sink

    async def logs(self, logs: Sequence[Log]) -> None:
        path = await self.sink.write_logs(logs)
        if path:
            log.debug("wrote %d logs to %s", len(logs), path)

    async def filters(self, filters: Sequence[Filter]) -> None:
        await self.state.update("filters", [f.to_dict() for f in filters])

    async def options(self, options: Options) -> None:
        await self.state.update("options", options.to_dict())

    async def block_number(self, block_number: int) -> None:
        await self.state.update("block_number", int(block_number))


def local_storage(root_dir: str) -> tuple[LocalSave, LocalLoad]:
    """State in `<root>/state.json`, log batches under `<root>/logs/`."""
    state = JSONStateFile(os.path.join(root_dir, "state.json"))
    return LocalSave(state, ParquetLogSink(os.path.join(root_dir, "logs"))), LocalLoad(state)
