import json, asyncio, signal
from dataclasses import asdict
import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .adapters.state_json import local_storage
from .application.filters import event_label
from .application.indexer import Indexer
from .domain.errors import IndexerError
from .domain.models import Filter
from .log import setup_logging

console = Console()


def _read_filters(path: str) -> list[Filter]:
    with open(path, "r") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = [data]
    return [Filter.from_dict(d) for d in data]


def _build(ctx: click.Context, filters: list[Filter] | None = None) -> Indexer:
    save, load = local_storage(ctx.obj["state_dir"])
    return Indexer(ctx.obj["rpc"], save, load, filters=filters)


def _run(coro):
    try:
        return asyncio.run(coro)
    except (IndexerError, ValueError) as e:
        raise click.ClickException(str(e))


@click.group()
@click.option("--rpc", envvar="SMARTLOGS_RPC_URL", default=None, help="Node JSON-RPC endpoint URL")
@click.option("--state-dir", envvar="SMARTLOGS_STATE_DIR", default="smartlogs_data", show_default=True,
              help="Directory holding state.json and the Parquet log batches")
@click.option("--log-level", envvar="SMARTLOGS_LOG_LEVEL", default="INFO", show_default=True)
@click.pass_context
def cli(ctx, rpc, state_dir, log_level):
    """smartlogs: decode and persist smart-contract event logs as the chain grows."""
    setup_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj.update(rpc=rpc, state_dir=state_dir)


@cli.command("run")
@click.option("--from-block", type=int, default=None, help="Reset the cursor: first window starts here")
@click.option("--filters", "filters_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="JSON file with the filter list to apply before starting")
@click.pass_context
def run_cmd(ctx, from_block, filters_path):
    """Index until interrupted (Ctrl-C stops after the in-flight cycle)."""
    if not ctx.obj["rpc"]:
        raise click.UsageError("--rpc (or SMARTLOGS_RPC_URL) is required")

    async def main():
        indexer = _build(ctx, _read_filters(filters_path) if filters_path else None)
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass
        try:
            # `run` starts the loop itself, honoring --from-block
            await indexer.initialize(auto_start=False)
            await indexer.start(from_block)
            while indexer.is_running() and not stop.is_set():
                try:
                    await asyncio.wait_for(stop.wait(), timeout=1.0)
                except asyncio.TimeoutError:
                    pass
        finally:
            await indexer.aclose()
        st = indexer.status()
        if st.last_error:
            raise click.ClickException(st.last_error)
        console.print(f"[bold]stopped[/] at block {st.latest_processed_block:,}")

    _run(main())


@cli.command("preview")
@click.argument("filter_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("tx_hash")
@click.pass_context
def preview_cmd(ctx, filter_path, tx_hash):
    """Decode what FILTER_PATH would capture from transaction TX_HASH."""
    if not ctx.obj["rpc"]:
        raise click.UsageError("--rpc (or SMARTLOGS_RPC_URL) is required")
    flt = _read_filters(filter_path)[0]

    async def main():
        indexer = _build(ctx)
        try:
            return await indexer.preview_logs(flt, tx_hash)
        finally:
            await indexer.aclose()

    logs = _run(main())
    console.print(Panel(event_label(flt.event_abi), title=f"{len(logs)} log(s)", expand=False))
    console.print_json(json.dumps([l.to_dict() for l in logs], default=str))


@cli.command("status")
@click.pass_context
def status_cmd(ctx):
    """Show the persisted cursor, options and filters."""
    async def main():
        indexer = _build(ctx)
        await indexer.load_state()
        return indexer

    indexer = _run(main())
    st = indexer.status()
    console.print(f"[bold]latest processed block[/]: {st.latest_processed_block:,}")
    console.print(f"[bold]options[/]: {asdict(st.options)}")
    table = Table("id", "tag", "chain", "address", "event")
    for f in indexer.state.filters:
        table.add_row(f.id, f.tag or "", str(f.chain_id or "*"), f.address, event_label(f.event_abi))
    console.print(table)


@cli.command("set-filters")
@click.argument("filters_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def set_filters_cmd(ctx, filters_path):
    """Replace the persisted filter list with FILTERS_PATH (a JSON list)."""
    async def main():
        indexer = _build(ctx)
        await indexer.load_state()
        await indexer.set_filters(_read_filters(filters_path))
        return len(indexer.state.filters)

    console.print(f"[green]{_run(main())} filter(s) configured[/]")


@cli.command("set-options")
@click.option("--delay", type=float, default=None, help="Seconds between steady-state cycles")
@click.option("--max-blocks", type=int, default=None, help="Max window width per cycle")
@click.option("--confirmation-blocks", type=int, default=None, help="Blocks kept behind the head")
@click.option("--auto-start/--no-auto-start", default=None, help="Start the loop from initialize()")
@click.pass_context
def set_options_cmd(ctx, delay, max_blocks, confirmation_blocks, auto_start):
    """Update and persist engine options."""
    async def main():
        indexer = _build(ctx)
        await indexer.load_state()
        return await indexer.set_options(
            delay=delay, max_blocks=max_blocks,
            confirmation_blocks=confirmation_blocks, auto_start=auto_start,
        )

    console.print(f"[bold]options[/]: {asdict(_run(main()))}")


def main():
    load_dotenv(".env")
    cli(obj={})


if __name__ == "__main__":
    main()
