from __future__ import annotations
import asyncio, itertools, logging, httpx
from typing import Any, Sequence
from ..domain.errors import RpcError
from ..domain.models import RawLog, to_int
from ..ports.rpc import ChainRPC

log = logging.getLogger(__name__)

# hex quantities web3 clients expose as numbers
_TX_QUANTITIES = ("blockNumber", "transactionIndex", "nonce", "gas", "gasPrice", "value",
                  "maxFeePerGas", "maxPriorityFeePerGas", "chainId", "type", "v")
_BLOCK_QUANTITIES = ("number", "timestamp", "gasLimit", "gasUsed", "baseFeePerGas", "size",
                     "difficulty", "totalDifficulty", "nonce", "blobGasUsed", "excessBlobGas")

def _to_hex_block(n: int) -> str: return hex(int(n))

def _normalize_quantities(obj: dict[str, Any] | None, keys: Sequence[str]) -> dict[str, Any] | None:
    if obj is None: return None
    out = dict(obj)
    for k in keys:
        if isinstance(out.get(k), str):
            out[k] = to_int(out[k])
    return out

def _raise_for_error(method: str, data: dict[str, Any]) -> None:
    if "error" in data and data["error"] is not None:
        err = data["error"]
        if isinstance(err, dict):
            raise RpcError(method, err.get("code"), err.get("message"))
        raise RpcError(method, None, err)


class HttpxRPC(ChainRPC):
    def __init__(self, rpc_url: str, timeout_s: int = 20, max_conn: int = 64, max_429_retries: int = 3) -> None:
        self.rpc_url = rpc_url
        self.max_429_retries = max_429_retries
        self._ids = itertools.count(1)
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
        )

    async def _post(self, payload: Any) -> Any:
        # retry on 429 with simple backoff
        for attempt in range(self.max_429_retries):
            r = await self.client.post(self.rpc_url, json=payload)
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                log.warning("rate limited by node, retrying in %.1fs", delay)
                await asyncio.sleep(delay); continue
            r.raise_for_status()
            return r.json()
        raise RpcError("http", 429, "retries exhausted")

    async def _call(self, method: str, params: list[Any]) -> Any:
        data = await self._post({"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params})
        _raise_for_error(method, data)
        return data.get("result")

    async def _batch(self, method: str, params_list: Sequence[list[Any]]) -> list[Any]:
        """One round trip; a missing, null or errored entry comes back as None."""
        if not params_list:
            return []
        ids = [next(self._ids) for _ in params_list]
        payload = [{"jsonrpc": "2.0", "id": i, "method": method, "params": p} for i, p in zip(ids, params_list)]
        data = await self._post(payload)
        if isinstance(data, dict):
            # whole-batch rejection
            _raise_for_error(method, data)
            data = [data]
        by_id: dict[Any, Any] = {}
        for entry in data:
            if not isinstance(entry, dict): continue
            if entry.get("error") is not None:
                log.debug("%s batch entry %s failed: %s", method, entry.get("id"), entry["error"])
                continue
            by_id[entry.get("id")] = entry.get("result")
        return [by_id.get(i) for i in ids]

    async def chain_id(self) -> int:
        return int(to_int(await self._call("eth_chainId", [])))

    async def block_number(self) -> int:
        return int(to_int(await self._call("eth_blockNumber", [])))

    async def get_logs(self, addresses: Sequence[str], topics0: Sequence[str], from_block: int, to_block: int) -> list[RawLog]:
        res = await self._call("eth_getLogs", [{
            "address": list(addresses),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": [[t.lower() for t in topics0]],
        }])
        return [RawLog.from_rpc(rl) for rl in res or []]

    async def get_transactions(self, hashes: Sequence[str]) -> list[dict[str, Any] | None]:
        res = await self._batch("eth_getTransactionByHash", [[h] for h in hashes])
        return [_normalize_quantities(tx, _TX_QUANTITIES) for tx in res]

    async def get_blocks(self, numbers: Sequence[int]) -> list[dict[str, Any] | None]:
        res = await self._batch("eth_getBlockByNumber", [[_to_hex_block(n), False] for n in numbers])
        return [_normalize_quantities(b, _BLOCK_QUANTITIES) for b in res]

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        rec = await self._call("eth_getTransactionReceipt", [tx_hash])
        if rec is None:
            return None
        out = _normalize_quantities(rec, ("blockNumber", "transactionIndex", "status", "gasUsed",
                                          "cumulativeGasUsed", "effectiveGasPrice", "type"))
        out["logs"] = [RawLog.from_rpc(rl) for rl in rec.get("logs") or []]
        return out

    async def aclose(self) -> None:
        await self.client.aclose()
