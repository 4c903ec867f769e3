from __future__ import annotations
from typing import Iterable


class IndexerError(Exception):
    """Base class for every error raised by the indexer engine and its adapters."""


class ConfigurationFault(IndexerError):
    """No usable filters or unknown chain id at cycle time. Not retried."""


class TransientFetchMiss(IndexerError):
    """Batched lookups still missing entries after the last retry attempt."""

    def __init__(self, kind: str, missing: Iterable[object], attempts: int) -> None:
        self.kind = kind
        self.missing = sorted(missing, key=str)
        self.attempts = attempts
        super().__init__(
            f"{len(self.missing)} {kind}(s) still missing after {attempts} attempts: "
            + ", ".join(str(m) for m in self.missing[:5])
            + (" ..." if len(self.missing) > 5 else "")
        )


class PreviewNotFound(IndexerError):
    """The receipt holds no log matching the previewed filter."""


class RpcError(IndexerError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: object, message: object) -> None:
        self.method = method
        self.code = code
        super().__init__(f"{method} RPC error code={code} message={message}")
