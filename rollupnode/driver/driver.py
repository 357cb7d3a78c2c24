"""The driver that keeps one L2 execution engine in sync with L1."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..rollup import RollupConfig
from .state import BatchSubmitter, DriverState
from .step import Output


class Driver:
    """Derives L2 blocks from L1 (or sequences them) and drives them into an engine."""

    def __init__(self, state: DriverState) -> None:
        self._state = state

    async def start(self, l1_heads: asyncio.Queue) -> None:
        """Start following the L1 heads put on the queue."""
        await self._state.start(l1_heads)

    async def close(self) -> None:
        """Stop the driver."""
        await self._state.close()


def new_driver(
    cfg: RollupConfig,
    l2,
    l1,
    log: Optional[logging.Logger],
    submitter: Optional[BatchSubmitter],
    sequencer: bool,
) -> Driver:
    """Build a driver.

    ``l2`` is both the L2 chain source and the execution engine; ``l1`` is both the
    L1 chain source and the downloader of L1 data.
    """
    log = log or logging.getLogger(__name__)
    if sequencer and submitter is None:
        log.error("Bad configuration")
    output = Output(cfg, dl=l1, l2=l2, log=log)
    return Driver(DriverState(log, cfg, l1, l2, output, submitter, sequencer))