"""Configuration of a rollup node: its L1 and L2 connections and rollup parameters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ..rollup import ConfigError, RollupConfig


@dataclass
class NodeConfig:
    """Everything a rollup node needs to connect to L1 and its L2 engines."""

    l1_node_addr: str = ""
    """Address of the L1 user JSON-RPC endpoint (eth namespace required)."""
    l2_engine_addrs: List[str] = field(default_factory=list)
    """Addresses of the L2 engine JSON-RPC endpoints (engine and eth namespace required)."""
    rollup: RollupConfig = field(default_factory=RollupConfig)
    sequencer: bool = False
    """Whether this node sequences new L2 blocks."""
    submitter_priv_key: Optional[bytes] = field(default=None, repr=False)
    """Raw 32-byte private key of the batch submitter, used in sequencer mode."""

    def check(self) -> None:
        """Raise ConfigError if the configuration does not make sense."""
        try:
            self.rollup.check()
        except ConfigError as exc:
            raise ConfigError(f"rollup config error: {exc}") from exc