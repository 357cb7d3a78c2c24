"""The driver's event loop: follows L1 heads and asks the output to extend the L2 chain.

The loop keeps track of the L1 head, the unsafe and safe L2 heads and a cached window
of L1 blocks after the L1 origin of the safe head. A verifier derives L2 blocks from
each full sequencing window; a sequencer creates a block on every block-time tick and
hands its batch to the batch submitter.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional, Protocol, Sequence

from ..batch import BatchData
from ..rollup import BlockID, L1BlockRef, L2BlockRef, RollupConfig
from ..sync import find_safe_l2_head

STEP_TIMEOUT = 10.0
_UINT64_MOD = 1 << 64


class L1Chain(Protocol):
    """Read access to the canonical L1 chain."""

    async def l1_block_ref_by_number(self, l1_num: int) -> L1BlockRef:
        ...

    async def l1_head_block_ref(self) -> L1BlockRef:
        ...

    async def l1_range(self, base: BlockID) -> list:
        """Return the ids of the canonical L1 blocks after ``base``."""
        ...


class L2Chain(Protocol):
    """Read access to the L2 chain."""

    async def l2_block_ref_by_number(self, l2_num: Optional[int]) -> L2BlockRef:
        """Return the L2 block at ``l2_num``, or the head when it is None."""
        ...

    async def l2_block_ref_by_hash(self, l2_hash: bytes) -> L2BlockRef:
        ...


class BatchSubmitter(Protocol):
    """Sends sequencer batches to L1."""

    async def submit(self, config: RollupConfig, batches: Sequence[BatchData]) -> bytes:
        """Submit the batches and return the hash of the L1 transaction."""
        ...


class DriverState:
    """Chain state of one L2 engine and the loop that keeps it moving."""

    def __init__(
        self,
        log: Optional[logging.Logger],
        config: RollupConfig,
        l1: L1Chain,
        l2: L2Chain,
        output,
        submitter: Optional[BatchSubmitter] = None,
        sequencer: bool = False,
    ) -> None:
        self.config = config
        self._log = log or logging.getLogger(__name__)
        self._l1 = l1
        self._l2 = l2
        self._output = output
        self._bss = submitter
        self._sequencer = sequencer

        self._l1_head = BlockID()
        self._l2_head = BlockID()
        self._l1_origin = BlockID()
        self._l2_safe_head = BlockID()
        self._l1_base = BlockID()
        self._l2_finalized = BlockID()
        self._l1_window: list = []

        self._l1_heads: Optional[asyncio.Queue] = None
        self._done = asyncio.Event()
        self._step_requested = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._submissions: set = set()

    @property
    def l1_head(self) -> BlockID:
        """Latest recorded head of the L1 chain."""
        return self._l1_head

    @property
    def l2_head(self) -> BlockID:
        """The unsafe L2 head."""
        return self._l2_head

    @property
    def l1_origin(self) -> BlockID:
        """L1 origin of the unsafe L2 head (sequencing only)."""
        return self._l1_origin

    @property
    def l2_safe_head(self) -> BlockID:
        """Head of the L2 chain as derived from L1."""
        return self._l2_safe_head

    @property
    def l1_base(self) -> BlockID:
        """L1 origin of the safe L2 head."""
        return self._l1_base

    @property
    def l2_finalized(self) -> BlockID:
        """L2 block that will never be reverted."""
        return self._l2_finalized

    @property
    def l1_window(self) -> tuple:
        """The cached L1 blocks after ``l1_base``, by increasing height."""
        return tuple(self._l1_window)

    async def start(self, l1_heads: asyncio.Queue) -> None:
        """Read the current heads and start the loop, which consumes L1 heads from the queue."""
        if self._task is not None:
            raise RuntimeError("driver state already started")
        if self._sequencer and self.config.block_time <= 0:
            raise ValueError(f"block time must be positive, got {self.config.block_time}")
        l1_head = await self._l1.l1_head_block_ref()
        l2_head = await self._l2.l2_block_ref_by_number(None)

        self._l1_head = l1_head.id
        self._l1_origin = l1_head.id
        self._l2_head = l2_head.id
        self._l2_safe_head = l2_head.id
        self._l1_base = l2_head.l1_origin
        self._l1_heads = l1_heads

        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def close(self) -> None:
        """Stop the loop and wait for pending batch submissions."""
        if self._done.is_set():
            raise RuntimeError("driver state already closed")
        self._done.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        if self._submissions:
            await asyncio.gather(*self._submissions, return_exceptions=True)

    def _request_step(self) -> None:
        self._step_requested.set()

    def _l1_window_end(self) -> BlockID:
        return self._l1_window[-1] if self._l1_window else self._l1_base

    def _sequencing_window(self) -> Optional[list]:
        size = self.config.seq_window_size
        if len(self._l1_window) < size:
            return None
        return self._l1_window[:size]

    def _can_step(self) -> bool:
        gap = (self._l1_head.number - self._l1_base.number) % _UINT64_MOD
        return gap >= self.config.seq_window_size

    async def _extend_l1_window(self) -> None:
        self._log.debug(
            "Extending the cached window from L1 cached_size=%d window_end=%s",
            len(self._l1_window), self._l1_window_end(),
        )
        nexts = await self._l1.l1_range(self._l1_window_end())
        self._l1_window.extend(nexts)

    async def _loop(self) -> None:
        self._log.info("State loop started")
        loop = asyncio.get_running_loop()

        def tick_task() -> Optional[asyncio.Task]:
            if not self._sequencer:
                return None
            return loop.create_task(asyncio.sleep(self.config.block_time))

        heads = loop.create_task(self._l1_heads.get())
        steps = loop.create_task(self._step_requested.wait())
        done = loop.create_task(self._done.wait())
        tick = tick_task()
        self._request_step()
        try:
            while True:
                waiting = {heads, steps, done}
                if tick is not None:
                    waiting.add(tick)
                finished, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if done in finished:
                    return
                step_due = steps in finished
                if step_due:
                    self._step_requested.clear()
                    steps = loop.create_task(self._step_requested.wait())
                if tick is not None and tick in finished:
                    tick = tick_task()
                    await self._on_block_creation()
                if heads in finished:
                    new_head = heads.result()
                    heads = loop.create_task(self._l1_heads.get())
                    await self._on_l1_head(new_head)
                if step_due:
                    await self._on_step()
        finally:
            for task in (heads, steps, done, tick):
                if task is not None:
                    task.cancel()

    async def _on_block_creation(self) -> None:
        first_of_epoch = False
        if self._l1_head != self._l1_origin:
            first_of_epoch = True
            self._l1_origin = self._l1_head
        if self._l1_origin.number <= self.config.genesis.l1.number:
            return
        try:
            new_head, batch = await self._output.new_block(
                self._l2_finalized, self._l2_head, self._l2_safe_head,
                self._l1_origin, first_of_epoch,
            )
        except Exception as exc:
            self._log.error(
                "Could not extend chain as sequencer err=%s l2_unsafe_head=%s l1_origin=%s",
                exc, self._l2_head, self._l1_origin,
            )
            return
        self._l2_head = new_head
        self._log.debug("Created new l2 block l2_unsafe_head=%s", self._l2_head)
        task = asyncio.get_running_loop().create_task(self._submit([batch]))
        self._submissions.add(task)
        task.add_done_callback(self._submissions.discard)

    async def _submit(self, batches: list) -> None:
        if self._bss is None:
            self._log.error("Error submitting batch err=no batch submitter configured")
            return
        try:
            await self._bss.submit(self.config, batches)
        except Exception as exc:
            self._log.error("Error submitting batch err=%s", exc)

    async def _on_l1_head(self, new_head: L1BlockRef) -> None:
        self._log.debug("Received new L1 Head new_head=%s old_head=%s", new_head.id, self._l1_head)
        if self._l1_head == new_head.id:
            self._log.debug(
                "Received L1 head signal that is the same as the current head l1_head=%s",
                new_head.id,
            )
            return

        if self._l1_head == new_head.parent:
            self._log.debug("Linear extension")
            self._l1_head = new_head.id
            if self._l1_window_end() == new_head.parent:
                self._l1_window.append(new_head.id)
        else:
            self._log.warning(
                "L1 Head signal indicates an L1 re-org old_l1_head=%s new_l1_head_parent=%s "
                "new_l1_head=%s",
                self._l1_head, new_head.parent, new_head.id,
            )
            try:
                l2_head = await self._l2.l2_block_ref_by_number(None)
            except Exception as exc:
                self._log.error(
                    "Could not get fetch L2 head when trying to handle a re-org err=%s", exc
                )
                return
            try:
                next_l2_head = await find_safe_l2_head(
                    l2_head.id, self._l1, self._l2, self.config.genesis
                )
            except Exception as exc:
                self._log.error(
                    "Could not get new safe L2 head when trying to handle a re-org err=%s", exc
                )
                return
            self._l1_head = new_head.id
            self._l1_window = []
            self._l1_base = next_l2_head.l1_origin
            self._l2_safe_head = next_l2_head.id

        if self._can_step():
            self._request_step()

    async def _on_step(self) -> None:
        if self._sequencer:
            self._log.debug("Skipping extension based on L1 chain as sequencer")
            return
        self._log.debug("Got step request")
        if len(self._l1_window) < self.config.seq_window_size:
            try:
                await self._extend_l1_window()
            except Exception as exc:
                self._log.error(
                    "Could not extend the cached L1 window err=%s l1_head=%s l1_base=%s "
                    "window_end=%s",
                    exc, self._l1_head, self._l1_base, self._l1_window_end(),
                )
                return

        window = self._sequencing_window()
        if window is not None:
            self._log.debug("Have enough cached blocks to run step.")
            try:
                new_l2_head = await asyncio.wait_for(
                    self._output.step(
                        self._l2_safe_head, self._l2_finalized, self._l2_head, window
                    ),
                    STEP_TIMEOUT,
                )
            except Exception as exc:
                self._log.error(
                    "Error in running the output step. err=%s l2_safe_head=%s "
                    "l2_finalized=%s window=%s",
                    exc, self._l2_safe_head, self._l2_finalized,
                    [str(block) for block in window],
                )
                return
            if self._l2_head == self._l2_safe_head:
                self._l2_head = new_l2_head
            self._l2_safe_head = new_l2_head
            self._l1_base = self._l1_window.pop(0)
        else:
            self._log.debug(
                "Not enough cached blocks to run step cached_window_len=%d", len(self._l1_window)
            )

        if self._can_step():
            self._request_step()