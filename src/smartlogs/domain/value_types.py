from __future__ import annotations
from typing import Any, NewType, Literal

Address   = NewType("Address", str)    # 0x-prefixed, checksummed
Topic0    = NewType("Topic0", str)     # 66-char 0x-hash, lowercase
Selector  = NewType("Selector", str)   # 10-char 0x-prefixed 4-byte selector
TxHash    = NewType("TxHash", str)     # 66-char 0x-hash, lowercase
AbiItem   = dict[str, Any]             # JSON ABI entry (event or function)
CycleOutcome = Literal["processed", "idle", "halted"]
