from __future__ import annotations
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Mapping, Union

from .value_types import AbiItem, Address, Topic0


def to_int(v: Any) -> int | None:
    """Handles 0x..., decimal strings, and native ints; None stays None."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    s = str(v).strip().lower()
    if not s:
        return None
    return int(s, 16) if s.startswith("0x") else int(s)


# ---------- include options (tagged variant) ----------------------------------

@dataclass(slots=True, frozen=True)
class IncludeAll:
    def resolve(self, obj: Mapping[str, Any] | None) -> dict[str, Any] | None:
        return None if obj is None else dict(obj)

@dataclass(slots=True, frozen=True)
class IncludeFields:
    fields: tuple[str, ...]
    def resolve(self, obj: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if obj is None: return None
        return {k: obj[k] for k in self.fields if k in obj}

@dataclass(slots=True, frozen=True)
class IncludeNone:
    def resolve(self, obj: Mapping[str, Any] | None) -> dict[str, Any] | None:
        return None

Include = Union[IncludeAll, IncludeFields, IncludeNone]


def parse_include(value: Any) -> Include:
    """`True` -> all fields, a list -> those fields, `None`/`False`/`[]` -> nothing."""
    if isinstance(value, (IncludeAll, IncludeFields, IncludeNone)):
        return value
    if value is None or value is False:
        return IncludeNone()
    if value is True:
        return IncludeAll()
    if isinstance(value, str):
        return IncludeFields((value,))
    if isinstance(value, (list, tuple)):
        return IncludeFields(tuple(str(v) for v in value)) if value else IncludeNone()
    raise TypeError(f"include option must be bool or list of field names, got {type(value).__name__}")


def dump_include(inc: Include) -> bool | list[str]:
    if isinstance(inc, IncludeAll): return True
    if isinstance(inc, IncludeFields): return list(inc.fields)
    return False


@dataclass(slots=True, frozen=True)
class IncludeOptions:
    transaction: Include = field(default_factory=IncludeNone)
    block: Include = field(default_factory=IncludeNone)

    @property
    def wants_transaction(self) -> bool: return not isinstance(self.transaction, IncludeNone)

    @property
    def wants_block(self) -> bool: return not isinstance(self.block, IncludeNone)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any] | None) -> "IncludeOptions":
        d = d or {}
        return cls(transaction=parse_include(d.get("transaction")), block=parse_include(d.get("block")))

    def to_dict(self) -> dict[str, Any]:
        return {"transaction": dump_include(self.transaction), "block": dump_include(self.block)}


# ---------- filters ------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class Filter:
    id: str
    address: str
    event_abi: AbiItem
    function_abi: AbiItem | None = None
    tag: str | None = None
    chain_id: int | None = None
    include: IncludeOptions = field(default_factory=IncludeOptions)

    @property
    def needs_transaction(self) -> bool:
        return self.function_abi is not None or self.include.wants_transaction

    @property
    def needs_block(self) -> bool:
        return self.include.wants_block

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Filter":
        """
        Accepts the snake_case form written by `to_dict` as well as the
        `jsonInterface: {event, function}` / `chainId` / `options.include`
        layout used by JS-side filter definitions.
        """
        iface = d.get("jsonInterface") or {}
        event_abi = d.get("event_abi") or d.get("eventAbi") or iface.get("event")
        if not event_abi:
            raise ValueError(f"filter {d.get('id')!r} has no event ABI")
        include = d.get("include")
        if include is None:
            include = d.get("includeOptions")
        if include is None:
            include = (d.get("options") or {}).get("include")
        chain_id = d.get("chain_id", d.get("chainId"))
        return cls(
            id=str(d.get("id") or ""),
            address=str(d["address"]),
            event_abi=dict(event_abi),
            function_abi=dict(d.get("function_abi") or d.get("functionAbi") or iface.get("function") or {}) or None,
            tag=d.get("tag"),
            chain_id=to_int(chain_id),
            include=include if isinstance(include, IncludeOptions) else IncludeOptions.from_dict(include),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "address": self.address,
            "event_abi": self.event_abi,
            "function_abi": self.function_abi,
            "tag": self.tag,
            "chain_id": self.chain_id,
            "include": self.include.to_dict(),
        }


@dataclass(slots=True, frozen=True)
class FormattedFilter:
    filter: Filter
    address: Address
    event_signature: Topic0

    @property
    def id(self) -> str: return self.filter.id

    @property
    def event_abi(self) -> AbiItem: return self.filter.event_abi

    @property
    def function_abi(self) -> AbiItem | None: return self.filter.function_abi

    @property
    def include(self) -> IncludeOptions: return self.filter.include


@dataclass(slots=True, frozen=True)
class UnionQuery:
    addresses: frozenset[str]
    topics0: frozenset[str]

    def __bool__(self) -> bool: return bool(self.addresses)


# ---------- node data ----------------------------------------------------------

@dataclass(slots=True, frozen=True)
class RawLog:
    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int | None
    transaction_hash: str
    transaction_index: int | None
    log_index: int | None

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None

    @classmethod
    def from_rpc(cls, rl: Mapping[str, Any]) -> "RawLog":
        topics = tuple((t if isinstance(t, str) else t.hex()).lower() for t in rl.get("topics") or [])
        return cls(
            address=str(rl["address"]),
            topics=topics,
            data=str(rl.get("data") or "0x"),
            block_number=to_int(rl.get("blockNumber")),
            transaction_hash=str(rl.get("transactionHash") or "").lower(),
            transaction_index=to_int(rl.get("transactionIndex")),
            log_index=to_int(rl.get("logIndex")),
        )


# ---------- output -------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class DecodedCall:
    signature: str
    name: str | None
    inputs: dict[str, Any]


@dataclass(slots=True, frozen=True)
class Log:
    filter_id: str
    log_index: int | None
    transaction_hash: str
    address: str
    event: DecodedCall
    function: DecodedCall | None = None
    transaction: dict[str, Any] | None = None
    block: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------- engine configuration & state ---------------------------------------

@dataclass(slots=True, frozen=True)
class Options:
    delay: float = 10.0              # seconds between steady-state cycles
    max_blocks: int = 10
    confirmation_blocks: int = 12
    auto_start: bool = False

    def __post_init__(self) -> None:
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")
        if self.max_blocks < 1:
            raise ValueError(f"max_blocks must be >= 1, got {self.max_blocks}")
        if self.confirmation_blocks < 0:
            raise ValueError(f"confirmation_blocks must be >= 0, got {self.confirmation_blocks}")

    def merged(self, **partial: Any) -> "Options":
        """Return a copy with every non-None value in `partial` applied."""
        known = {f.name for f in fields(self)}
        unknown = set(partial) - known
        if unknown:
            raise TypeError(f"unknown option(s): {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in partial.items() if v is not None})

    @staticmethod
    def normalize_keys(d: Mapping[str, Any]) -> dict[str, Any]:
        """Map camelCase option names onto field names."""
        aliases = {"maxBlocks": "max_blocks", "confirmationBlocks": "confirmation_blocks", "autoStart": "auto_start"}
        return {aliases.get(k, k): v for k, v in d.items()}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any] | None) -> "Options":
        return cls().merged(**cls.normalize_keys(d or {}))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int
    ignore_delay: bool = False
    def span(self) -> int: return self.end - self.start + 1


@dataclass(slots=True)
class IndexerState:
    chain_id: int | None = None
    latest_processed_block: int = 0
    running: bool = False
    filters: list[Filter] = field(default_factory=list)
    options: Options = field(default_factory=Options)
    last_range: BlockRange | None = None
    last_error: str | None = None


@dataclass(slots=True, frozen=True)
class StatusSnapshot:
    chain_id: int | None
    is_running: bool
    latest_processed_block: int
    filter_count: int
    options: Options
    last_range: BlockRange | None = None
    last_error: str | None = None
