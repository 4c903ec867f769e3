from __future__ import annotations
import asyncio, logging
from typing import Any, Awaitable, Callable, Hashable, Iterable, Sequence, TypeVar

from ..domain.errors import TransientFetchMiss
from ..ports.rpc import ChainRPC

log = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


class BatchFetcher:
    """
    Resolves the transactions and blocks referenced by a set of logs.

    Every lookup goes out as one batched call; entries the node answers with
    nothing are treated as transient misses (load-balanced nodes lag behind each
    other) and only that subset is asked again, up to `max_attempts` calls with
    exponential backoff between them.
    """

    def __init__(self, rpc: ChainRPC, *, max_attempts: int = 5, backoff: float = 0.5) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.rpc = rpc
        self.max_attempts = max_attempts
        self.backoff = backoff

    async def fetch_transactions(self, hashes: Iterable[str]) -> dict[str, dict[str, Any]]:
        return await self._fetch("transaction", {h.lower() for h in hashes}, self.rpc.get_transactions)

    async def fetch_blocks(self, numbers: Iterable[int]) -> dict[int, dict[str, Any]]:
        return await self._fetch("block", {int(n) for n in numbers}, self.rpc.get_blocks)

    async def _fetch(
        self,
        kind: str,
        keys: set[K],
        batch_call: Callable[[Sequence[K]], Awaitable[list[dict[str, Any] | None]]],
    ) -> dict[K, dict[str, Any]]:
        resolved: dict[K, dict[str, Any]] = {}
        missing: list[K] = list(keys)
        attempt = 0
        while missing:
            attempt += 1
            results = await batch_call(missing)
            still: list[K] = []
            for key, res in zip(missing, results):
                if res is None:
                    still.append(key)
                else:
                    resolved[key] = res
            # a short response counts the unanswered tail as missing
            still.extend(missing[len(results):])
            missing = still
            if not missing:
                break
            if attempt >= self.max_attempts:
                raise TransientFetchMiss(kind, missing, attempt)
            delay = self.backoff * 2 ** (attempt - 1)
            log.debug("%d %s(s) missing from batch, retry %d in %.2fs", len(missing), kind, attempt, delay)
            await asyncio.sleep(delay)
        return resolved
