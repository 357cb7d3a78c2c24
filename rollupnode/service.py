"""Building node and log configurations from command-line settings and files."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Union

from .node.config import NodeConfig
from .node.log import LogConfig, default_log_config
from .rollup import ConfigError, RollupConfig

_SECP256K1_ORDER = int(
    "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16
)
_KEY_HEX_LENGTH = 64

PathLike = Union[str, Path]


def load_private_key(path: PathLike) -> bytes:
    """Read a hex-encoded secp256k1 private key from a file; return its 32 raw bytes.

    The file holds exactly 64 hex characters, optionally followed by a line ending.
    """
    raw = Path(path).read_bytes()
    head = raw[:_KEY_HEX_LENGTH]
    length = next((i for i, b in enumerate(head) if b < ord("!")), len(head))
    if length != _KEY_HEX_LENGTH:
        raise ValueError("key file too short, want 64 hex characters")
    for index, b in enumerate(raw[_KEY_HEX_LENGTH:]):
        if b not in (ord("\n"), ord("\r")):
            raise ValueError(f"invalid character {chr(b)!r} at end of key file")
        if index >= 2:
            raise ValueError("key file too long, want 64 hex characters")
    try:
        key = bytes.fromhex(head.decode("ascii"))
    except ValueError:
        raise ValueError("invalid hex data for private key") from None
    scalar = int.from_bytes(key, "big")
    if scalar == 0:
        raise ValueError("invalid private key, zero or negative")
    if scalar >= _SECP256K1_ORDER:
        raise ValueError("invalid private key, >=N")
    return key


def new_rollup_config(path: PathLike) -> RollupConfig:
    """Load the rollup configuration from a JSON file."""
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ConfigError(f"failed to read rollup config: {exc}") from exc
    try:
        return RollupConfig.from_json(data)
    except ConfigError as exc:
        raise ConfigError(f"failed to decode rollup config: {exc}") from exc


def new_config(
    rollup_config_path: PathLike,
    l1_node_addr: str,
    l2_engine_addrs: Iterable[str],
    sequencing_enabled: bool,
    batch_submitter_key_path: Optional[PathLike],
) -> NodeConfig:
    """Build and check a node configuration; sequencing requires a batch-submitter key."""
    rollup = new_rollup_config(rollup_config_path)

    submitter_key = None
    if sequencing_enabled:
        if not batch_submitter_key_path:
            raise ConfigError("sequencer mode needs batch-submitter key")
        try:
            submitter_key = load_private_key(batch_submitter_key_path)
        except (OSError, ValueError) as exc:
            raise ConfigError(f"failed to read batch submitter key: {exc}") from exc

    cfg = NodeConfig(
        l1_node_addr=l1_node_addr,
        l2_engine_addrs=list(l2_engine_addrs),
        rollup=rollup,
        sequencer=sequencing_enabled,
        submitter_priv_key=submitter_key,
    )
    cfg.check()
    return cfg


def new_log_config(level: str, format: str, color: Optional[bool] = None) -> LogConfig:
    """Build and check a log configuration; ``color`` None keeps the terminal-based default."""
    cfg = default_log_config()
    cfg.level = level
    cfg.format = format
    if color is not None:
        cfg.color = color
    cfg.check()
    return cfg