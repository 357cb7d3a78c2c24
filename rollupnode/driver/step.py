"""Building L2 blocks from L1 data through the execution engine."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Optional, Protocol, Sequence

from ..batch import (
    BatchData,
    batches_from_evm_transactions,
    filter_batches,
    sorted_and_prepared_batches,
)
from ..deposits import DepositError, derive_deposits, l1_info_deposit_bytes
from ..rollup import ZERO_ADDRESS, ZERO_HASH, BlockID, RollupConfig

FETCH_TIMEOUT = 20.0


@dataclass(frozen=True)
class ForkchoiceState:
    """The head, safe and finalized L2 block hashes handed to the engine."""

    head_block_hash: bytes = ZERO_HASH
    safe_block_hash: bytes = ZERO_HASH
    finalized_block_hash: bytes = ZERO_HASH


@dataclass(frozen=True)
class PayloadAttributes:
    """Inputs from which the engine builds a new L2 block."""

    timestamp: int
    random: bytes = ZERO_HASH
    suggested_fee_recipient: bytes = ZERO_ADDRESS
    transactions: tuple = ()
    no_tx_pool: bool = False


@dataclass(frozen=True)
class ExecutionPayload:
    """A block built by the engine."""

    block_hash: bytes
    block_number: int
    timestamp: int
    parent_hash: bytes = ZERO_HASH
    transactions: tuple = ()

    def id(self) -> BlockID:
        return BlockID(self.block_hash, self.block_number)


@dataclass(frozen=True)
class ForkchoiceUpdatedResult:
    """Result of a forkchoice update; ``payload_id`` is set when a block is being built."""

    payload_id: Optional[bytes] = None


class Downloader(Protocol):
    """Fetches L1 data."""

    async def fetch_l1_info(self, block_id: BlockID) -> Any:
        """Return the header information (an L1BlockInfo) of an L1 block."""
        ...

    async def fetch_receipts(self, block_id: BlockID, receipt_hash: bytes) -> list:
        """Return the receipts of an L1 block, checked against its receipt hash."""
        ...

    async def fetch_transactions(self, window: Sequence[BlockID]) -> list:
        """Return the transactions (L1Transaction) of a window of L1 blocks."""
        ...


class Engine(Protocol):
    """The L2 execution engine."""

    async def get_payload(self, payload_id: bytes) -> ExecutionPayload:
        ...

    async def forkchoice_update(
        self, state: ForkchoiceState, attrs: Optional[PayloadAttributes]
    ) -> ForkchoiceUpdatedResult:
        ...

    async def execute_payload(self, payload: ExecutionPayload) -> None:
        ...

    async def block_by_hash(self, block_hash: bytes) -> Any:
        """Return the L2 block (an L2Block) with the given hash."""
        ...


class StepError(RuntimeError):
    """Deriving or inserting L2 blocks failed.

    ``last`` is the id of the last L2 block that was processed successfully, when known.
    """

    def __init__(self, message: str, last: Optional[BlockID] = None) -> None:
        super().__init__(message)
        self.last = last


def _deadline(timeout: float = FETCH_TIMEOUT) -> float:
    return asyncio.get_running_loop().time() + timeout


async def _fetch(deadline: float, awaitable: Awaitable, message: str, last: BlockID):
    remaining = max(deadline - asyncio.get_running_loop().time(), 0.0)
    try:
        return await asyncio.wait_for(awaitable, remaining)
    except Exception as exc:
        raise StepError(f"{message}: {exc}", last=last) from exc


class Output:
    """Drives the engine to create L2 blocks, as a sequencer or from L1 sequencing windows."""

    def __init__(
        self,
        config: RollupConfig,
        dl: Downloader,
        l2: Engine,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self._dl = dl
        self._l2 = l2
        self._log = log or logging.getLogger(__name__)

    async def new_block(
        self,
        l2_finalized: BlockID,
        l2_parent: BlockID,
        l2_safe: BlockID,
        l1_origin: BlockID,
        include_deposits: bool,
    ):
        """Sequence a new L2 block on top of ``l2_parent``; return its id and its batch."""
        self._log.info(
            "creating new block l2_parent=%s l1_origin=%s include_deposits=%s",
            l2_parent, l1_origin, include_deposits,
        )
        deadline = _deadline()
        l2_info = await _fetch(
            deadline, self._l2.block_by_hash(l2_parent.hash),
            f"failed to fetch L2 block info of {l2_parent}", l2_parent,
        )
        l1_info = await _fetch(
            deadline, self._dl.fetch_l1_info(l1_origin),
            f"failed to fetch L1 block info of {l1_origin}", l2_parent,
        )

        timestamp = l2_info.time + self.config.block_time
        if timestamp >= l1_info.time:
            raise StepError("L2 Timestamp is too large", last=l2_parent)

        receipts: list = []
        if include_deposits:
            receipts = await _fetch(
                deadline, self._dl.fetch_receipts(l1_origin, l1_info.receipt_hash),
                f"failed to fetch receipts of {l1_origin}", l2_parent,
            )
        try:
            l1_info_tx = l1_info_deposit_bytes(l1_info)
        except DepositError as exc:
            raise StepError(str(exc), last=l2_parent) from exc
        try:
            deposits = derive_deposits(l2_parent.number + 1, receipts)
        except DepositError as exc:
            raise StepError(f"failed to derive deposits: {exc}", last=l2_parent) from exc
        self._log.info(
            "Derived deposits count=%d l2_parent=%s l1_origin=%s", len(deposits), l2_parent, l1_origin
        )
        txns = [l1_info_tx, *deposits]
        deposit_start = len(txns)

        attrs = PayloadAttributes(
            timestamp=timestamp,
            random=l1_info.mix_digest,
            suggested_fee_recipient=self.config.fee_recipient_address,
            transactions=tuple(txns),
            no_tx_pool=False,
        )
        fc = ForkchoiceState(
            head_block_hash=l2_parent.hash,
            safe_block_hash=l2_safe.hash,
            finalized_block_hash=l2_finalized.hash,
        )
        try:
            payload = await self.add_block(fc, attrs, False, True)
        except StepError as exc:
            raise StepError(f"failed to extend L2 chain: {exc}", last=l2_parent) from exc

        batch = BatchData(
            epoch=l1_info.number,
            timestamp=payload.timestamp,
            transactions=list(payload.transactions[deposit_start:]),
        )
        return payload.id(), batch

    async def step(
        self,
        l2_head: BlockID,
        l2_finalized: BlockID,
        unsafe_l2_head: BlockID,
        l1_input: Sequence[BlockID],
    ) -> BlockID:
        """Derive and insert the L2 blocks of one sequencing window; return the last block id.

        On failure a StepError is raised whose ``last`` is the last block inserted.
        """
        if not l1_input:
            raise StepError(f"empty L1 sequencing window on L2 {l2_head}", last=l2_head)
        if len(l1_input) != self.config.seq_window_size:
            raise StepError("Invalid sequencing window size", last=l2_head)

        first = l1_input[0]
        self._log.debug(
            "Running update step on the L2 node input_l1_first=%s input_l1_last=%s "
            "input_l2_parent=%s finalized_l2=%s",
            first, l1_input[-1], l2_head, l2_finalized,
        )
        epoch = first.number
        deadline = _deadline()
        l2_info = await _fetch(
            deadline, self._l2.block_by_hash(l2_head.hash),
            f"failed to fetch L2 block info of {l2_head}", l2_head,
        )
        l1_info = await _fetch(
            deadline, self._dl.fetch_l1_info(first),
            f"failed to fetch L1 block info of {first}", l2_head,
        )
        try:
            l1_info_tx = l1_info_deposit_bytes(l1_info)
        except DepositError as exc:
            raise StepError(f"failed to create l1InfoTx: {exc}", last=l2_head) from exc
        receipts = await _fetch(
            deadline, self._dl.fetch_receipts(first, l1_info.receipt_hash),
            f"failed to fetch receipts of {first}", l2_head,
        )
        try:
            deposits = derive_deposits(l2_head.number + 1, receipts)
        except DepositError as exc:
            raise StepError(f"failed to derive deposits: {exc}", last=l2_head) from exc
        window_text = "[" + ", ".join(str(block) for block in l1_input) + "]"
        transactions = await _fetch(
            deadline, self._dl.fetch_transactions(list(l1_input)),
            f"failed to fetch transactions from {window_text}", l2_head,
        )
        batches = batches_from_evm_transactions(self.config, transactions)

        min_l2_time = l2_info.time + self.config.block_time
        max_l2_time = l1_info.time
        batches = filter_batches(self.config, epoch, min_l2_time, max_l2_time, batches)
        batches = sorted_and_prepared_batches(
            batches, epoch, self.config.block_time, min_l2_time, max_l2_time
        )

        fc = ForkchoiceState(
            head_block_hash=l2_head.hash,
            safe_block_hash=l2_head.hash,
            finalized_block_hash=l2_finalized.hash,
        )
        update_unsafe = unsafe_l2_head.hash == l2_head.hash
        last = l2_head
        for index, batch in enumerate(batches):
            txns = [l1_info_tx]
            if index == 0:
                txns.extend(deposits)
            txns.extend(batch.transactions)
            attrs = PayloadAttributes(
                timestamp=batch.timestamp,
                random=l1_info.mix_digest,
                suggested_fee_recipient=self.config.fee_recipient_address,
                transactions=tuple(txns),
                no_tx_pool=False,
            )
            try:
                payload = await self.add_block(fc, attrs, True, update_unsafe)
            except StepError as exc:
                raise StepError(
                    f"failed to extend L2 chain at block {index}/{len(batches)} "
                    f"of epoch {epoch}: {exc}",
                    last=last,
                ) from exc
            last = payload.id()
            fc = replace(fc, head_block_hash=last.hash, safe_block_hash=last.hash)
        return last

    async def add_block(
        self,
        fc: ForkchoiceState,
        attrs: PayloadAttributes,
        update_safe: bool,
        update_unsafe: bool,
    ) -> ExecutionPayload:
        """Have the engine build, execute and (optionally) adopt a block; return its payload."""
        try:
            result = await self._l2.forkchoice_update(fc, attrs)
        except Exception as exc:
            raise StepError(f"failed to create new block via forkchoice: {exc}") from exc
        if result.payload_id is None:
            raise StepError("nil id in forkchoice result when expecting a valid ID")
        try:
            payload = await self._l2.get_payload(result.payload_id)
        except Exception as exc:
            raise StepError(f"failed to get execution payload: {exc}") from exc
        try:
            await self._l2.execute_payload(payload)
        except Exception as exc:
            raise StepError(f"failed to insert execution payload: {exc}") from exc
        if update_safe:
            fc = replace(fc, safe_block_hash=payload.block_hash)
        if update_unsafe:
            fc = replace(fc, head_block_hash=payload.block_hash)
        try:
            await self._l2.forkchoice_update(fc, None)
        except Exception as exc:
            raise StepError(
                f"failed to make the new L2 block canonical via forkchoice: {exc}"
            ) from exc
        return payload