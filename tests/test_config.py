import pytest

from rollupnode.node.config import NodeConfig
from rollupnode.rollup import BlockID, ConfigError, Genesis, RollupConfig

L1_HASH = bytes([1]) * 32
L2_HASH = bytes([2]) * 32


def make_rollup(**overrides) -> RollupConfig:
    params = dict(
        genesis=Genesis(l1=BlockID(L1_HASH, 424242), l2=BlockID(L2_HASH, 1337), l2_time=0),
        block_time=2,
        seq_window_size=2,
        l1_chain_id=900,
    )
    params.update(overrides)
    return RollupConfig(**params)


def test_block_time_error_is_wrapped_and_fix_passes():
    cfg = NodeConfig(l1_node_addr="ws://localhost:8546", rollup=make_rollup(block_time=0))
    with pytest.raises(ConfigError, match=r"^rollup config error: block time cannot be 0"):
        cfg.check()
    cfg.rollup.block_time = 2
    assert cfg.check() is None


def test_small_sequencing_window_is_rejected():
    cfg = NodeConfig(rollup=make_rollup(seq_window_size=1))
    with pytest.raises(ConfigError, match="sequencing window size must at least be 2, got 1"):
        cfg.check()


def test_identical_genesis_hashes_are_rejected():
    rollup = make_rollup(genesis=Genesis(l1=BlockID(L1_HASH, 0), l2=BlockID(L1_HASH, 0)))
    with pytest.raises(ConfigError, match="L1 and L2 genesis cannot be the same"):
        NodeConfig(rollup=rollup).check()


def test_empty_genesis_hash_is_rejected():
    rollup = make_rollup(genesis=Genesis(l1=BlockID(L1_HASH, 0)))
    with pytest.raises(ConfigError, match="genesis l2 hash cannot be empty"):
        NodeConfig(rollup=rollup).check()


def test_private_key_is_hidden_from_repr():
    key_material = bytes([7]) * 32
    cfg = NodeConfig(submitter_priv_key=key_material)
    assert key_material.hex() not in repr(cfg)
    assert cfg.submitter_priv_key == key_material