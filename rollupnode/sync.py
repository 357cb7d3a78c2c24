"""Reconciling L1 and L2: finding the newest L2 block whose L1 origin is still canonical.

Every L2 block references its L2 parent and the L1 block it was derived from. After an
L1 re-org the node walks back from its L2 head until it reaches a block whose L1 origin
is on the canonical L1 chain; derivation restarts from there.

Chain sources are objects with awaitable ``l1_block_ref_by_number(number)`` and
``l2_block_ref_by_hash(hash)`` methods that raise NotFoundError for unknown blocks.
"""

from __future__ import annotations

from .rollup import BlockID, Genesis, L2BlockRef, NotFoundError

MAX_REORG_DEPTH = 500


class WrongChainError(RuntimeError):
    """The L2 chain does not descend from the L1 chain the node is connected to."""

    def __init__(self, message: str = "wrong chain") -> None:
        super().__init__(message)


class TooDeepReorgError(RuntimeError):
    """Walking back the L2 chain exceeded the maximum re-org depth."""

    def __init__(self, message: str = "reorg is too deep") -> None:
        super().__init__(message)


async def find_safe_l2_head(start: BlockID, l1, l2, genesis: Genesis) -> L2BlockRef:
    """Walk back from ``start`` to the first L2 block whose L1 origin is canonical."""
    block = await l2.l2_block_ref_by_hash(start.hash)
    depth = 0
    while True:
        try:
            l1_ref = await l1.l1_block_ref_by_number(block.l1_origin.number)
        except NotFoundError:
            pass
        else:
            if l1_ref.id.hash == block.l1_origin.hash:
                return block

        # At the L2 genesis without its L1 origin being canonical: wrong L1 chain.
        if block.id.hash == genesis.l2.hash or block.id.number == genesis.l2.number:
            raise WrongChainError()

        block = await l2.l2_block_ref_by_hash(block.parent.hash)
        depth += 1
        if depth >= MAX_REORG_DEPTH:
            raise TooDeepReorgError()