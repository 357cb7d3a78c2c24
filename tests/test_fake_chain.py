import pytest

from rollupnode.driver.fake_chain import (
    FakeChainSource,
    chain_l1,
    chain_l2,
    fake_genesis,
    fake_id,
    fake_l1_block,
    fake_l2_block,
)
from rollupnode.rollup import ZERO_HASH, BlockID, NotFoundError


def test_fake_id_pads_name_to_hash():
    block = fake_id("a", 3)
    assert block.hash == b"a" + bytes(31)
    assert block.number == 3


def test_fake_genesis():
    genesis = fake_genesis("a", "A", 4)
    assert genesis.l1 == fake_id("a", 0)
    assert genesis.l2 == fake_id("A", 4)


def test_fake_l1_block_at_zero_has_no_parent():
    assert fake_l1_block("a", "z", 0).parent == BlockID()
    assert fake_l1_block("b", "a", 1).parent == fake_id("a", 0)


def test_fake_l2_block_links():
    origin = fake_id("c", 2)
    block = fake_l2_block("C", "B", origin, 2)
    assert block.id == fake_id("C", 2)
    assert block.parent == fake_id("B", 1)
    assert block.l1_origin == origin


def test_chain_l1_links_parents():
    chain = chain_l1(0, "abc")
    assert [ref.id for ref in chain] == [fake_id("a", 0), fake_id("b", 1), fake_id("c", 2)]
    assert chain[0].parent == BlockID()
    for prev, block in zip(chain, chain[1:]):
        assert block.parent == prev.id


def test_chain_l1_with_offset():
    chain = chain_l1(3, "def")
    assert [ref.id.number for ref in chain] == [3, 4, 5]
    assert chain[0].parent == BlockID(ZERO_HASH, 2)


def test_chain_l2_origins_follow_l1():
    l1 = chain_l1(0, "abc")
    l2 = chain_l2(l1, "AB")
    assert [ref.l1_origin for ref in l2] == [l1[0].id, l1[1].id]
    assert l2[1].parent == l2[0].id


def test_chain_l2_longer_than_l1_rejected():
    with pytest.raises(ValueError):
        chain_l2(chain_l1(0, "a"), "AB")


@pytest.mark.asyncio
async def test_l1_head_and_advance():
    src = FakeChainSource(["abc"], ["A"])
    assert await src.l1_head_block_ref() == fake_l1_block("a", "", 0)
    advanced = src.advance_l1()
    assert advanced == fake_l1_block("b", "a", 1)
    assert src.l1_head() == advanced
    assert await src.l1_head_block_ref() == advanced


@pytest.mark.asyncio
async def test_l1_block_ref_by_number_limited_by_head():
    src = FakeChainSource(["abc"], ["A"])
    assert await src.l1_block_ref_by_number(0) == fake_l1_block("a", "", 0)
    with pytest.raises(NotFoundError):
        await src.l1_block_ref_by_number(1)
    src.advance_l1()
    assert (await src.l1_block_ref_by_number(1)).id == fake_id("b", 1)


@pytest.mark.asyncio
async def test_l1_head_on_empty_chain():
    src = FakeChainSource([""], [])
    with pytest.raises(NotFoundError):
        await src.l1_head_block_ref()


@pytest.mark.asyncio
async def test_l1_range_up_to_head():
    src = FakeChainSource(["abcd"], ["A"])
    src.advance_l1()
    src.advance_l1()
    assert await src.l1_range(fake_id("a", 0)) == [fake_id("b", 1), fake_id("c", 2)]
    assert await src.l1_range(fake_id("c", 2)) == []


@pytest.mark.asyncio
async def test_l1_range_base_beyond_head_not_found():
    src = FakeChainSource(["abcd"], ["A"])
    src.advance_l1()
    with pytest.raises(NotFoundError):
        await src.l1_range(fake_id("c", 2))
    with pytest.raises(NotFoundError):
        await src.l1_range(fake_id("q", 0))


@pytest.mark.asyncio
async def test_l2_block_ref_by_number_and_head():
    src = FakeChainSource(["abc"], ["ABC"])
    assert (await src.l2_block_ref_by_number(None)).id == fake_id("A", 0)
    head = src.set_l2_head(2)
    assert head.id == fake_id("C", 2)
    assert await src.l2_block_ref_by_number(None) == head
    assert (await src.l2_block_ref_by_number(1)).id == fake_id("B", 1)


@pytest.mark.asyncio
async def test_l2_block_ref_by_number_beyond_head():
    src = FakeChainSource(["abc"], ["ABC"])
    with pytest.raises(NotFoundError):
        await src.l2_block_ref_by_number(1)


@pytest.mark.asyncio
async def test_l2_block_ref_by_hash():
    src = FakeChainSource(["abc"], ["ABC"])
    src.set_l2_head(1)
    assert (await src.l2_block_ref_by_hash(fake_id("B", 1).hash)).id == fake_id("B", 1)
    with pytest.raises(NotFoundError):
        await src.l2_block_ref_by_hash(fake_id("C", 2).hash)
    with pytest.raises(NotFoundError):
        await src.l2_block_ref_by_hash(fake_id("Q", 0).hash)


@pytest.mark.asyncio
async def test_l2_queries_without_chain():
    src = FakeChainSource(["abc"], [""])
    with pytest.raises(RuntimeError):
        await src.l2_block_ref_by_number(None)


def test_reorg_l1_switches_chain():
    src = FakeChainSource(["abc", "axy"], ["A"])
    src.advance_l1()
    src.advance_l1()
    assert src.l1_head().id == fake_id("c", 2)
    src.reorg_l1()
    assert src.l1_head() == fake_l1_block("y", "x", 2)
    with pytest.raises(IndexError):
        src.reorg_l1()


@pytest.mark.asyncio
async def test_reorg_l2_switches_chain():
    src = FakeChainSource(["abc", "abc"], ["AB", "AX"])
    src.set_l2_head(1)
    src.reorg_l2()
    assert (await src.l2_block_ref_by_number(None)).id == fake_id("X", 1)
    with pytest.raises(IndexError):
        src.reorg_l2()


def test_advance_past_end():
    src = FakeChainSource(["ab"], ["AB"])
    src.advance_l1()
    with pytest.raises(IndexError):
        src.advance_l1()
    with pytest.raises(IndexError):
        src.set_l2_head(2)