# smartlogs/ports/storage.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import Filter, Log, Options


class Save(Protocol):
    """Write side of the persistence backend. The four facets are independent writes."""

    async def logs(self, logs: Sequence[Log]) -> None:
        """Persist one cycle's batch (may be empty). Delivery is at-least-once."""

    async def filters(self, filters: Sequence[Filter]) -> None:
        """Replace the persisted filter list."""

    async def options(self, options: Options) -> None:
        """Replace the persisted options."""

    async def block_number(self, block_number: int) -> None:
        """Persist the progress cursor (latest fully processed block)."""


class Load(Protocol):
    """Read side of the persistence backend."""

    async def filters(self) -> list[Filter]: ...

    async def options(self) -> Options | None:
        """Return persisted options, or None when nothing was saved yet."""

    async def block_number(self) -> int:
        """Return the persisted cursor, 0 when nothing was saved yet."""
