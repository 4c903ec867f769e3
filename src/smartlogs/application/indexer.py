from __future__ import annotations
import asyncio, logging
from dataclasses import replace
from typing import Any, Iterable, Mapping, Sequence

from ..adapters.codec_eth_abi import EthAbiCodec
from ..adapters.rpc_httpx import HttpxRPC
from ..domain.errors import ConfigurationFault, PreviewNotFound
from ..domain.models import (
    BlockRange, Filter, FormattedFilter, IndexerState, Log, Options, RawLog, StatusSnapshot,
)
from ..domain.value_types import CycleOutcome
from ..ports.codec import AbiCodec
from ..ports.rpc import ChainRPC
from ..ports.storage import Load, Save
from .assembly import assemble_logs
from .batching import BatchFetcher
from .filters import active_filters, derive_filter_id, event_label, format_filters, union_query
from .planning import next_range

log = logging.getLogger(__name__)


class Indexer:
    """
    Lifecycle controller: a single cooperative worker task running
    range -> getLogs -> fetch -> assemble -> persist cycles.

    Caller contract: `set_filters` / `set_options` mutate state the running
    cycle reads; call them between cycles (or while stopped). There is no
    internal locking.
    """

    def __init__(
        self,
        host: str | None,
        save: Save,
        load: Load,
        filters: Iterable[Filter] | None = None,
        options: Options | Mapping[str, Any] | None = None,
        *,
        rpc: ChainRPC | None = None,
        codec: AbiCodec | None = None,
        idle_backoff: float = 1.0,
        idle_warn_after: int = 60,
        fetch_attempts: int = 5,
        fetch_backoff: float = 0.5,
    ) -> None:
        self.host = host
        self._rpc = rpc
        self._fetcher: BatchFetcher | None = None
        self.fetch_attempts = fetch_attempts
        self.fetch_backoff = fetch_backoff
        self.codec = codec if codec is not None else EthAbiCodec()
        self.save = save
        self.load = load
        self.idle_backoff = idle_backoff
        self.idle_warn_after = idle_warn_after
        self.state = IndexerState()

        self._initial_filters = list(filters) if filters is not None else None
        if isinstance(options, Options):
            options = options.to_dict()
        self._initial_options = Options.normalize_keys(options or {})

        self._task: asyncio.Task[None] | None = None
        self._wakeup: asyncio.Event | None = None
        self._stop_requested = False
        self._idle_streak = 0

    @property
    def rpc(self) -> ChainRPC:
        """Node client, built from `host` on first use."""
        if self._rpc is None:
            if not self.host:
                raise ConfigurationFault("no RPC host configured")
            self._rpc = HttpxRPC(self.host)
        return self._rpc

    @property
    def fetcher(self) -> BatchFetcher:
        if self._fetcher is None:
            self._fetcher = BatchFetcher(self.rpc, max_attempts=self.fetch_attempts, backoff=self.fetch_backoff)
        return self._fetcher

    # ---------------------------------------------------------------- setup

    async def initialize(self, auto_start: bool | None = None) -> None:
        """
        Hydrate chain id, filters, options and cursor. Call once before `start`.
        `auto_start` overrides the persisted option for this call only.
        """
        self.state.chain_id = await self.rpc.chain_id()
        await self.load_state()

        log.info(
            "Indexer initialized: chain %s, %d filter(s), latest processed block %d",
            self.state.chain_id, len(self.state.filters), self.state.latest_processed_block,
        )
        if auto_start is None:
            auto_start = self.state.options.auto_start
        if auto_start:
            await self.start()

    async def load_state(self) -> None:
        """Persisted filters, options and cursor, with constructor overrides applied. No node access."""
        self.state.filters = list(await self.load.filters())

        opts = await self.load.options() or Options()
        if self._initial_options:
            opts = opts.merged(**self._initial_options)
            await self.save.options(opts)
        self.state.options = opts
        self.state.latest_processed_block = await self.load.block_number()

        if self._initial_filters is not None:
            await self.set_filters(self._initial_filters)

    async def set_filters(self, filters: Iterable[Filter]) -> None:
        """Replace the filter list; persisted only when it differs by id or content."""
        new: list[Filter] = []
        for f in filters:
            new.append(f if f.id else replace(f, id=derive_filter_id(f, self.codec)))
        incoming = {f.id: f for f in new}
        if len(incoming) != len(new):
            raise ValueError("filter ids must be unique")

        current = {f.id: f for f in self.state.filters}
        added = incoming.keys() - current.keys()
        removed = current.keys() - incoming.keys()
        changed = [i for i in incoming.keys() & current.keys() if incoming[i] != current[i]]

        self.state.filters = new
        if not (added or removed or changed):
            log.debug("Filters unchanged (%d)", len(new))
            return
        await self.save.filters(new)
        log.info("Filters saved: %d added, %d removed, %d changed", len(added), len(removed), len(changed))

    async def set_options(self, options: Mapping[str, Any] | None = None, **partial: Any) -> Options:
        merged = self.state.options.merged(**Options.normalize_keys({**(options or {}), **partial}))
        self.state.options = merged
        await self.save.options(merged)
        log.info("Options saved: %s", merged)
        return merged

    # ------------------------------------------------------------ lifecycle

    def is_running(self) -> bool:
        return self.state.running

    def status(self) -> StatusSnapshot:
        return StatusSnapshot(
            chain_id=self.state.chain_id,
            is_running=self.state.running,
            latest_processed_block=self.state.latest_processed_block,
            filter_count=len(self.state.filters),
            options=self.state.options,
            last_range=self.state.last_range,
            last_error=self.state.last_error,
        )

    async def start(self, block_number: int | None = None) -> bool:
        """
        Start the cycle loop in the background. Returns once the first cycle
        has ended (processed, idle or halted); False if already running.
        `block_number` resets the cursor: the first window starts there.
        """
        if self.state.running:
            return False
        self.state.running = True
        self.state.last_error = None
        self._stop_requested = False
        self._idle_streak = 0
        self._wakeup = asyncio.Event()
        first_cycle = asyncio.Event()
        log.info("Indexer started%s", f" from block {block_number}" if block_number is not None else "")
        self._task = asyncio.create_task(self._loop(block_number, first_cycle), name="smartlogs-indexer")
        await first_cycle.wait()
        return True

    async def stop(self) -> bool:
        """Let the in-flight cycle finish, schedule no further cycle. False if already stopped."""
        if not self.state.running or self._stop_requested:
            return False
        self._stop_requested = True
        if self._wakeup is not None:
            self._wakeup.set()
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await task
        self.state.running = False
        self._task = None
        log.info("Indexer stopped at block %d", self.state.latest_processed_block)
        return True

    async def aclose(self) -> None:
        await self.stop()
        if self._rpc is not None:
            await self._rpc.aclose()

    async def _pause(self, seconds: float) -> None:
        """Sleep, cut short by `stop()`."""
        if seconds <= 0 or self._wakeup is None:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _loop(self, explicit_from: int | None, first_cycle: asyncio.Event) -> None:
        try:
            while not self._stop_requested:
                try:
                    outcome, rng = await self._cycle(explicit_from)
                except Exception as e:
                    log.exception("Cycle failed, stopping indexer")
                    self.state.last_error = f"{type(e).__name__}: {e}"
                    break
                finally:
                    first_cycle.set()

                if outcome == "halted":
                    break
                if outcome == "processed":
                    explicit_from = None
                    self._idle_streak = 0
                    await self._pause(0 if rng is not None and rng.ignore_delay else self.state.options.delay)
                else:
                    self._idle_streak += 1
                    if self._idle_streak == self.idle_warn_after:
                        log.warning(
                            "No newly confirmed block after %d polls, node may be lagging", self._idle_streak
                        )
                    await self._pause(self.idle_backoff)
        finally:
            self.state.running = False
            first_cycle.set()

    # --------------------------------------------------------------- cycle

    async def _cycle(self, explicit_from: int | None) -> tuple[CycleOutcome, BlockRange | None]:
        filters = active_filters(self.state.filters, self.state.chain_id)
        fault: ConfigurationFault | None = None
        if self.state.chain_id is None:
            fault = ConfigurationFault("chain id unknown, initialize() was not called")
        elif not filters:
            fault = ConfigurationFault(f"no filters configured for chain {self.state.chain_id}")
        if fault is not None:
            log.error("%s, stopping indexer", fault)
            self.state.last_error = str(fault)
            return "halted", None

        formatted = format_filters(filters, self.codec)
        query = union_query(formatted)

        rng = await next_range(self.rpc, self.state, explicit_from)
        if rng is None:
            log.debug("No newly confirmed block after %d yet", self.state.latest_processed_block)
            return "idle", None

        log.info("Processing logs from block %d to block %d", rng.start, rng.end)
        raw_logs = await self.rpc.get_logs(sorted(query.addresses), sorted(query.topics0), rng.start, rng.end)
        logs = await self._assemble(formatted, raw_logs)

        await self.save.logs(logs)
        log.info("%d logs saved", len(logs))
        await self.save.block_number(rng.end)
        self.state.latest_processed_block = rng.end
        self.state.last_range = rng
        log.info("Last processed block number (%d) saved", rng.end)
        return "processed", rng

    async def _assemble(
        self,
        formatted: Sequence[FormattedFilter],
        raw_logs: Sequence[RawLog],
        filter_id: str | None = None,
    ) -> list[Log]:
        transactions: dict[str, dict[str, Any]] = {}
        blocks: dict[int, dict[str, Any]] = {}
        if raw_logs:
            tx_keys = {(ff.address.lower(), ff.event_signature.lower()) for ff in formatted if ff.filter.needs_transaction}
            block_keys = {(ff.address.lower(), ff.event_signature.lower()) for ff in formatted if ff.filter.needs_block}
            tx_logs = [r for r in raw_logs if (r.address.lower(), (r.topic0 or "").lower()) in tx_keys]
            block_logs = [r for r in raw_logs if (r.address.lower(), (r.topic0 or "").lower()) in block_keys]
            if tx_logs:
                transactions = await self.fetcher.fetch_transactions(r.transaction_hash for r in tx_logs)
            if block_logs:
                blocks = await self.fetcher.fetch_blocks(r.block_number for r in block_logs if r.block_number is not None)
        return assemble_logs(formatted, raw_logs, self.codec, transactions, blocks, filter_id=filter_id)

    # ------------------------------------------------------------- preview

    async def preview_logs(self, filter: Filter, transaction_hash: str) -> list[Log]:
        """
        Decode the logs one historical transaction emitted for `filter`, exactly
        as a cycle would, with an empty filter id. Independent of the loop.
        """
        formatted = format_filters([filter], self.codec)
        ff = formatted[0]
        receipt = await self.rpc.get_transaction_receipt(transaction_hash)
        if receipt is None:
            raise PreviewNotFound(f"no receipt for transaction {transaction_hash}")
        matching = [
            rl for rl in receipt.get("logs") or []
            if rl.address.lower() == ff.address.lower() and (rl.topic0 or "").lower() == ff.event_signature.lower()
        ]
        if not matching:
            raise PreviewNotFound(
                f"transaction {transaction_hash} has no {event_label(filter.event_abi)} log from {ff.address}"
            )
        return await self._assemble(formatted, matching, filter_id="")
