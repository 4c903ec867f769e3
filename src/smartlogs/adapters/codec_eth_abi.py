from __future__ import annotations

import re
from typing import Any, Sequence

from eth_abi import decode as abi_decode
from eth_utils import event_abi_to_log_topic, function_abi_to_4byte_selector, to_checksum_address

from ..domain.models import DecodedCall, RawLog
from ..domain.value_types import AbiItem, Address, Selector, Topic0
from ..ports.codec import AbiCodec

_ARRAY_RE = re.compile(r"^(.*)\[(\d*)\]$")

# ---------- hex / type helpers -------------------------------------------------

def _hexstr_to_bytes(s: str) -> bytes:
    h = s[2:] if s[:2].lower() == "0x" else s
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""

def canonical_type(param: AbiItem) -> str:
    """Type string for eth_abi: `tuple` types expand to `(t1,t2)` keeping any array suffix."""
    typ = param["type"]
    if typ.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ

def _topic_is_hashed(param: AbiItem) -> bool:
    """Indexed reference types are stored as the keccak of their encoding, not the value."""
    typ = param["type"]
    return typ in ("string", "bytes") or typ.endswith("]") or typ.startswith("tuple")

def _normalize(param: AbiItem, value: Any) -> Any:
    typ = param["type"]
    m = _ARRAY_RE.match(typ)
    if m:
        inner = {**param, "type": m.group(1)}
        return [_normalize(inner, v) for v in value]
    if typ == "tuple":
        comps = param.get("components", [])
        return {(c.get("name") or str(i)): _normalize(c, v) for i, (c, v) in enumerate(zip(comps, value))}
    if typ == "address":
        return to_checksum_address(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value

def _key(param: AbiItem, idx: int) -> str:
    return param.get("name") or str(idx)


# ---------- codec --------------------------------------------------------------

class EthAbiCodec(AbiCodec):
    """ABI codec backed by eth_abi (decoding) and eth_utils (hashing, checksums)."""

    def checksum_address(self, address: str) -> Address:
        return Address(to_checksum_address(address))

    def encode_event_signature(self, event_abi: AbiItem) -> Topic0:
        return Topic0("0x" + event_abi_to_log_topic(event_abi).hex())

    def encode_function_signature(self, function_abi: AbiItem) -> Selector:
        return Selector("0x" + function_abi_to_4byte_selector(function_abi).hex())

    def decode_event_log(self, raw_log: RawLog, event_abi: AbiItem) -> DecodedCall:
        inputs = list(enumerate(event_abi.get("inputs", [])))
        indexed = [(i, p) for i, p in inputs if p.get("indexed")]
        plain = [(i, p) for i, p in inputs if not p.get("indexed")]
        topics = raw_log.topics if event_abi.get("anonymous") else raw_log.topics[1:]
        if len(topics) < len(indexed):
            raise ValueError(
                f"log {raw_log.transaction_hash}#{raw_log.log_index} has {len(topics)} topics, "
                f"event {event_abi.get('name')} declares {len(indexed)} indexed inputs"
            )

        values: dict[str, Any] = {}
        for (i, p), topic in zip(indexed, topics):
            if _topic_is_hashed(p):
                values[_key(p, i)] = topic
            else:
                (v,) = abi_decode([canonical_type(p)], _hexstr_to_bytes(topic))
                values[_key(p, i)] = _normalize(p, v)

        if plain:
            decoded = abi_decode([canonical_type(p) for _, p in plain], _hexstr_to_bytes(raw_log.data))
            for (i, p), v in zip(plain, decoded):
                values[_key(p, i)] = _normalize(p, v)

        return DecodedCall(
            signature=self.encode_event_signature(event_abi),
            name=event_abi.get("name"),
            inputs={_key(p, i): values[_key(p, i)] for i, p in inputs},
        )

    def decode_function_input(self, data: str, inputs_abi: Sequence[AbiItem]) -> dict[str, Any]:
        params = list(inputs_abi)
        if not params:
            return {}
        decoded = abi_decode([canonical_type(p) for p in params], _hexstr_to_bytes(data))
        return {_key(p, i): _normalize(p, v) for i, (p, v) in enumerate(zip(params, decoded))}
