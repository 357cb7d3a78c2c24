"""Rollup configuration and the block references shared across the node."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

HASH_LENGTH = 32
ADDRESS_LENGTH = 20
ZERO_HASH = bytes(HASH_LENGTH)
ZERO_ADDRESS = bytes(ADDRESS_LENGTH)
_UINT64_MAX = (1 << 64) - 1


class ConfigError(ValueError):
    """Raised when a rollup configuration is malformed or inconsistent."""


class NotFoundError(LookupError):
    """Raised by chain sources when a requested block is not known."""


def _as_fixed_bytes(value: Any, size: int, what: str) -> bytes:
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise TypeError(f"{what} must be bytes, got {type(value).__name__}")
    value = bytes(value)
    if len(value) != size:
        raise ValueError(f"{what} must be {size} bytes, got {len(value)}")
    return value


def _check_uint64(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{what} must be an integer, got {type(value).__name__}")
    if not 0 <= value <= _UINT64_MAX:
        raise ValueError(f"{what} out of uint64 range: {value}")
    return value


@dataclass(frozen=True)
class BlockID:
    """A block identified by its hash and height."""

    hash: bytes = ZERO_HASH
    number: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", _as_fixed_bytes(self.hash, HASH_LENGTH, "block hash"))
        _check_uint64(self.number, "block number")

    def __str__(self) -> str:
        return f"0x{self.hash.hex()}:{self.number}"


@dataclass(frozen=True)
class L1BlockRef:
    """An L1 block together with its parent."""

    id: BlockID = field(default_factory=BlockID)
    parent: BlockID = field(default_factory=BlockID)


@dataclass(frozen=True)
class L2BlockRef:
    """An L2 block together with its L2 parent and the L1 block it was derived from."""

    id: BlockID = field(default_factory=BlockID)
    parent: BlockID = field(default_factory=BlockID)
    l1_origin: BlockID = field(default_factory=BlockID)


@dataclass(frozen=True)
class Genesis:
    """Anchor point of the rollup on L1 and L2."""

    l1: BlockID = field(default_factory=BlockID)
    l2: BlockID = field(default_factory=BlockID)
    l2_time: int = 0


def _hex(value: bytes) -> str:
    return "0x" + value.hex()


def _parse_hex(value: Any, size: int, what: str) -> bytes:
    if not isinstance(value, str) or not value[:2] in ("0x", "0X"):
        raise ConfigError(f"{what}: expected 0x-prefixed hex string, got {value!r}")
    try:
        raw = bytes.fromhex(value[2:])
    except ValueError as exc:
        raise ConfigError(f"{what}: invalid hex: {exc}") from exc
    if len(raw) != size:
        raise ConfigError(f"{what}: expected {size} bytes, got {len(raw)}")
    return raw


def _parse_uint(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _UINT64_MAX:
        raise ConfigError(f"{what}: expected unsigned 64-bit integer, got {value!r}")
    return value


def _parse_object(value: Any, what: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{what}: expected an object, got {value!r}")
    return value


def _parse_block_id(value: Any, what: str) -> BlockID:
    obj = _parse_object(value, what)
    block_hash = ZERO_HASH
    if obj.get("hash") is not None:
        block_hash = _parse_hex(obj["hash"], HASH_LENGTH, f"{what}.hash")
    number = _parse_uint(obj.get("number", 0), f"{what}.number")
    return BlockID(block_hash, number)


def _block_id_json(block: BlockID) -> dict:
    return {"hash": _hex(block.hash), "number": block.number}


@dataclass
class RollupConfig:
    """Network-wide parameters that every rollup node must agree on."""

    genesis: Genesis = field(default_factory=Genesis)
    block_time: int = 0
    max_sequencer_time_diff: int = 0
    seq_window_size: int = 0
    l1_chain_id: Optional[int] = None
    fee_recipient_address: bytes = ZERO_ADDRESS
    batch_inbox_address: bytes = ZERO_ADDRESS
    batch_sender_address: bytes = ZERO_ADDRESS

    def __post_init__(self) -> None:
        for name in ("fee_recipient_address", "batch_inbox_address", "batch_sender_address"):
            setattr(self, name, _as_fixed_bytes(getattr(self, name), ADDRESS_LENGTH, name))

    def check(self) -> None:
        """Raise ConfigError if the configuration does not make sense."""
        if self.block_time == 0:
            raise ConfigError(f"block time cannot be 0, got {self.block_time}")
        if self.seq_window_size < 2:
            raise ConfigError(
                f"sequencing window size must at least be 2, got {self.seq_window_size}"
            )
        if self.genesis.l1.hash == ZERO_HASH:
            raise ConfigError("genesis l1 hash cannot be empty")
        if self.genesis.l2.hash == ZERO_HASH:
            raise ConfigError("genesis l2 hash cannot be empty")
        if self.genesis.l2.hash == self.genesis.l1.hash:
            raise ConfigError(
                "achievement get! rollup inception: L1 and L2 genesis cannot be the same"
            )

    def to_json(self) -> str:
        """Serialise the configuration to its JSON form."""
        return json.dumps(
            {
                "genesis": {
                    "l1": _block_id_json(self.genesis.l1),
                    "l2": _block_id_json(self.genesis.l2),
                    "l2_time": self.genesis.l2_time,
                },
                "block_time": self.block_time,
                "max_sequencer_time_diff": self.max_sequencer_time_diff,
                "seq_window_size": self.seq_window_size,
                "l1_chain_id": self.l1_chain_id,
                "fee_recipient_address": _hex(self.fee_recipient_address),
                "batch_inbox_address": _hex(self.batch_inbox_address),
                "batch_sender_address": _hex(self.batch_sender_address),
            }
        )

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "RollupConfig":
        """Parse a configuration from its JSON form; missing fields keep their zero value."""
        try:
            raw = json.loads(data)
        except (ValueError, TypeError) as exc:
            raise ConfigError(f"invalid rollup config JSON: {exc}") from exc
        obj = _parse_object(raw, "config")
        genesis_obj = _parse_object(obj.get("genesis"), "genesis")
        genesis = Genesis(
            l1=_parse_block_id(genesis_obj.get("l1"), "genesis.l1"),
            l2=_parse_block_id(genesis_obj.get("l2"), "genesis.l2"),
            l2_time=_parse_uint(genesis_obj.get("l2_time", 0), "genesis.l2_time"),
        )
        chain_id = obj.get("l1_chain_id")
        if chain_id is not None and (isinstance(chain_id, bool) or not isinstance(chain_id, int)):
            raise ConfigError(f"l1_chain_id: expected an integer, got {chain_id!r}")

        def address(name: str) -> bytes:
            value = obj.get(name)
            if value is None:
                return ZERO_ADDRESS
            return _parse_hex(value, ADDRESS_LENGTH, name)

        return cls(
            genesis=genesis,
            block_time=_parse_uint(obj.get("block_time", 0), "block_time"),
            max_sequencer_time_diff=_parse_uint(
                obj.get("max_sequencer_time_diff", 0), "max_sequencer_time_diff"
            ),
            seq_window_size=_parse_uint(obj.get("seq_window_size", 0), "seq_window_size"),
            l1_chain_id=chain_id,
            fee_recipient_address=address("fee_recipient_address"),
            batch_inbox_address=address("batch_inbox_address"),
            batch_sender_address=address("batch_sender_address"),
        )