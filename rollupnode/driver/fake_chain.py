"""An in-memory L1/L2 chain source whose heads and re-orgs are driven by hand.

Blocks are named by single characters: block ``"b"`` at height 1 has a hash made of
the character's UTF-8 bytes followed by zero padding. Each string of characters is
one chain, and a list of such strings gives the chain before and after each re-org.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..rollup import HASH_LENGTH, BlockID, Genesis, L1BlockRef, L2BlockRef, NotFoundError

_NO_PARENT = "\x00"


def fake_id(id: str, num: int) -> BlockID:
    """Return the block id whose hash starts with the UTF-8 bytes of ``id``."""
    block_hash = id.encode("utf-8").ljust(HASH_LENGTH, b"\x00")[:HASH_LENGTH]
    return BlockID(block_hash, num)


def fake_genesis(l1: str, l2: str, l2_offset: int) -> Genesis:
    """Return a genesis anchored at L1 height 0 and L2 height ``l2_offset``."""
    return Genesis(l1=fake_id(l1, 0), l2=fake_id(l2, l2_offset))


def fake_l1_block(self_id: str, parent: str, num: int) -> L1BlockRef:
    """Return an L1 block reference; the block at height 0 has no parent."""
    parent_id = fake_id(parent, num - 1) if num != 0 else BlockID()
    return L1BlockRef(id=fake_id(self_id, num), parent=parent_id)


def fake_l2_block(self_id: str, parent: str, l1_parent: BlockID, num: int) -> L2BlockRef:
    """Return an L2 block reference derived from ``l1_parent``."""
    parent_id = fake_id(parent, num - 1) if num != 0 else BlockID()
    return L2BlockRef(id=fake_id(self_id, num), parent=parent_id, l1_origin=l1_parent)


def chain_l1(offset: int, ids: str) -> list:
    """Build a linked L1 chain from a string of block names, starting at height ``offset``."""
    out = []
    prev = _NO_PARENT
    for index, name in enumerate(ids):
        out.append(fake_l1_block(name, prev, offset + index))
        prev = name
    return out


def chain_l2(l1: Sequence[L1BlockRef], ids: str) -> list:
    """Build a linked L2 chain whose n-th block is derived from the n-th L1 block."""
    if len(ids) > len(l1):
        raise ValueError(f"L2 chain of {len(ids)} blocks is longer than its L1 chain of {len(l1)}")
    out = []
    prev = _NO_PARENT
    for index, (l1_ref, name) in enumerate(zip(l1, ids)):
        out.append(fake_l2_block(name, prev, l1_ref.id, index))
        prev = name
    return out


class FakeChainSource:
    """L1 and L2 chain source with controllable heads and switchable re-org variants."""

    def __init__(self, l1: Sequence[str], l2: Sequence[str], log: Optional[logging.Logger] = None):
        self.l1s = [chain_l1(0, ids) for ids in l1]
        if len(l2) > len(self.l1s):
            raise ValueError("every L2 chain needs a matching L1 chain")
        self.l2s = [chain_l2(l1_chain, ids) for l1_chain, ids in zip(self.l1s, l2)]
        self._log = log or logging.getLogger(__name__)
        self._l1_reorg = 0
        self._l2_reorg = 0
        self._l1_head = 0
        self._l2_head = 0

    @property
    def _l1_chain(self) -> list:
        return self.l1s[self._l1_reorg]

    @property
    def _l2_chain(self) -> list:
        return self.l2s[self._l2_reorg]

    async def l1_range(self, base: BlockID) -> list:
        """Return the ids of the L1 blocks after ``base`` up to and including the head."""
        out = []
        found = False
        for index, block in enumerate(self._l1_chain):
            if found:
                out.append(block.id)
            if block.id == base:
                found = True
            if index == self._l1_head:
                if found:
                    return out
                raise NotFoundError(f"L1 block {base} not found")
        raise NotFoundError(f"L1 block {base} not found")

    async def l1_block_ref_by_number(self, l1_num: int) -> L1BlockRef:
        self._log.debug("L1BlockRefByNumber l1_num=%s l1_head=%s reorg=%s",
                        l1_num, self._l1_head, self._l1_reorg)
        if l1_num > self._l1_head:
            raise NotFoundError(f"L1 block number {l1_num} not found")
        return self._l1_chain[l1_num]

    async def l1_head_block_ref(self) -> L1BlockRef:
        self._log.debug("L1HeadBlockRef l1_head=%s reorg=%s", self._l1_head, self._l1_reorg)
        if not self._l1_chain:
            raise NotFoundError("L1 chain is empty")
        return self._l1_chain[self._l1_head]

    async def l2_block_ref_by_number(self, l2_num: Optional[int]) -> L2BlockRef:
        """Return the L2 block at ``l2_num``, or the head when ``l2_num`` is None."""
        self._log.debug("L2BlockRefByNumber l2_num=%s l2_head=%s reorg=%s",
                        l2_num, self._l2_head, self._l2_reorg)
        if not self._l2_chain:
            raise RuntimeError("bad test, no l2 chain")
        if l2_num is None:
            return self._l2_chain[self._l2_head]
        if l2_num > self._l2_head:
            raise NotFoundError(f"L2 block number {l2_num} not found")
        return self._l2_chain[l2_num]

    async def l2_block_ref_by_hash(self, l2_hash: bytes) -> L2BlockRef:
        self._log.debug("L2BlockRefByHash l2_hash=0x%s l2_head=%s reorg=%s",
                        bytes(l2_hash).hex(), self._l2_head, self._l2_reorg)
        for index, block in enumerate(self._l2_chain):
            if block.id.hash == l2_hash:
                return await self.l2_block_ref_by_number(index)
        raise NotFoundError(f"L2 block 0x{bytes(l2_hash).hex()} not found")

    def reorg_l1(self) -> None:
        """Switch to the next L1 chain variant."""
        self._log.debug("Reorg L1 new_reorg=%s old_reorg=%s", self._l1_reorg + 1, self._l1_reorg)
        self._l1_reorg += 1
        if self._l1_reorg >= len(self.l1s):
            raise IndexError("No more re-org chains available")

    def reorg_l2(self) -> None:
        """Switch to the next L2 chain variant."""
        self._log.debug("Reorg L2 new_reorg=%s old_reorg=%s", self._l2_reorg + 1, self._l2_reorg)
        self._l2_reorg += 1
        if self._l2_reorg >= len(self.l2s):
            raise IndexError("No more re-org chains available")

    def set_l2_head(self, head: int) -> L2BlockRef:
        """Move the L2 head to height ``head`` and return that block."""
        self._log.debug("Set L2 head new_head=%s old_head=%s", head, self._l2_head)
        self._l2_head = head
        if self._l2_head >= len(self._l2_chain):
            raise IndexError("Cannot advance L2 past end of chain")
        return self._l2_chain[self._l2_head]

    def advance_l1(self) -> L1BlockRef:
        """Move the L1 head forward by one block and return the new head."""
        self._log.debug("Advance L1 new_head=%s old_head=%s", self._l1_head + 1, self._l1_head)
        self._l1_head += 1
        if self._l1_head >= len(self._l1_chain):
            raise IndexError("Cannot advance L1 past end of chain")
        return self._l1_chain[self._l1_head]

    def l1_head(self) -> L1BlockRef:
        """Return the current L1 head."""
        self._log.debug("L1 Head head=%s", self._l1_head)
        return self._l1_chain[self._l1_head]