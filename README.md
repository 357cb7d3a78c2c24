# rollupnode

`rollupnode` holds the core of a rollup node. It reads L1 data, turns it
into L2 blocks, and keeps an L2 execution engine in step with the L1 chain.
Everything that talks to a chain or an engine is `asyncio` based and works
against objects you supply.

## Modules

### `rollupnode.rollup`

- `BlockID(hash, number)`: a 32-byte hash and a uint64 height. Both are
  checked on construction.
- `L1BlockRef(id, parent)` and `L2BlockRef(id, parent, l1_origin)`.
- `Genesis(l1, l2, l2_time)`: the anchor point of the rollup.
- `RollupConfig`: holds the genesis, `block_time`, `max_sequencer_time_diff`,
  `seq_window_size`, `l1_chain_id` and the 20-byte `fee_recipient_address`,
  `batch_inbox_address` and `batch_sender_address`.
  - `check()` raises `ConfigError` in these cases: the block time is zero,
    the window is smaller than 2, a genesis hash is empty, or the L1 and L2
    genesis hashes are the same.
  - `to_json()` and `RollupConfig.from_json(data)` convert to and from JSON.
    Hashes and addresses are written as `0x` hex. Fields missing from the
    input keep their zero value.
- `NotFoundError`: the error that chain sources raise for unknown blocks.

### `rollupnode.rlp`

`encode(item)` accepts bytes, str, non-negative int and nested lists or
tuples. `decode(data)` returns bytes and lists. It raises `RLPError` on
input that is not canonical, that is truncated, or that has trailing data.

### `rollupnode.batch`

- `BatchData(epoch, timestamp, transactions)` is a version-1 sequencer
  batch. `marshal_binary()` writes a type byte followed by RLP, and
  `BatchData.unmarshal_binary(data)` reads it back.
- `encode_batches(config, batches)` and `decode_batches(config, data)` write
  and read an uncompressed (v1) bundle. A v2 bundle or an unknown bundle type
  raises `BatchError`.
- `valid_batch(batch, config, epoch, min_l2_time, max_l2_time)` accepts a
  batch only when all of these hold:
  - the epoch matches;
  - the timestamp is aligned to the block time from `genesis.l2_time`;
  - `min_l2_time <= timestamp < max_l2_time`;
  - there are no empty transactions;
  - there are no deposit-type (`0x7E`) transactions.
- `filter_batches(...)` keeps the valid batches. When two batches share a
  timestamp, the first one wins.
- `sorted_and_prepared_batches(batches, epoch, block_time, min_l2_time, max_l2_time)`
  returns one batch for each block slot and fills gaps with empty batches.
- `batches_from_evm_transactions(config, txs)` reads `L1Transaction(to,
  data, sender)` values. It takes batches only from transactions that were
  sent to the batch inbox by the batch sender. Transactions it cannot decode
  are skipped. `sender` is the address recovered from the signature. You
  supply it; this package does not verify signatures.

### `rollupnode.deposits`

- `unmarshal_log_event(block_num, tx_index, ev)` decodes a
  `TransactionDeposited` `Log` from the deposit contract into a `DepositTx`.
- `user_deposits(l2_block_height, receipts)` collects the deposits of
  successful `Receipt`s. Their transaction indices start at 1.
- `derive_deposits(...)` returns the same deposits encoded with
  `DepositTx.marshal_binary()`.
- `l1_info_deposit(block)` and `l1_info_deposit_bytes(block)` build the
  L1-info deposit from an `L1BlockInfo`.
- `l1_info_deposit_tx_data(data)` is the inverse: it returns
  `(number, time, base_fee, block_hash)`.
- `block_references(l2_block, genesis)` finds the L2 parent and the L1
  origin of an `L2Block`.

Errors raise `DepositError`.

### `rollupnode.sync`

`await find_safe_l2_head(start, l1, l2, genesis)` walks back from `start` to
the first L2 block whose L1 origin is canonical.

- It raises `WrongChainError` when it reaches genesis without a match.
- It raises `TooDeepReorgError` after 500 steps.

The `l1` and `l2` sources need `async` methods `l1_block_ref_by_number` and
`l2_block_ref_by_hash`.

### `rollupnode.driver`

- `driver.step.Output(config, dl, l2, log)` drives an `Engine` (the
  `forkchoice_update`, `get_payload`, `execute_payload` and `block_by_hash`
  methods) using a `Downloader` of L1 data.
  - `step(...)` derives and inserts the blocks of one sequencing window and
    returns the last block id.
  - `new_block(...)` sequences a single block and returns `(id, batch)`.
  - `add_block(...)` builds and adopts a single payload.
  - Failures raise `StepError`. Its `last` attribute is the last block that
    was inserted.
- `driver.state.DriverState` runs the loop. The loop reads L1 heads from an
  `asyncio.Queue`, extends its cached L1 window, runs a step once a full
  window is available, and handles L1 re-orgs with `find_safe_l2_head`. In
  sequencer mode it creates a block every `block_time` seconds and passes the
  batch to a `BatchSubmitter`. The current heads are available as read-only
  properties.
- `driver.driver.new_driver(cfg, l2, l1, log, submitter, sequencer)` connects
  these parts and returns a `Driver` with `await start(queue)` and
  `await close()`.
- `driver.fake_chain.FakeChainSource` is an in-memory L1/L2 chain. You move
  its heads and switch between re-org variants by hand. Blocks are named by
  characters (`chain_l1`, `chain_l2`, `fake_id`, `fake_genesis`).

### `rollupnode.node` and `rollupnode.service`

- `node.config.NodeConfig` holds the L1 address, the L2 engine addresses, the
  rollup config, the sequencer flag and the submitter key. `check()` wraps
  `RollupConfig.check()`.
- `node.log.LogConfig(level, color, format)`:
  - Formats are `text`, `terminal`, `json` and `json-pretty`.
  - Levels are `trace`, `debug`, `info`, `warn`, `error` and `crit`, in any
    case.
  - `check()` validates both.
  - `new_logger()` returns a `logging.Logger` that writes to standard output.
- `node.log.default_log_config()` returns info level and text format, with
  colour on when standard output is a terminal.
- `service.new_rollup_config(path)` loads a JSON rollup config file.
- `service.new_log_config(level, format, color)` builds and checks a
  `LogConfig`.
- `service.new_config(rollup_config_path, l1_node_addr, l2_engine_addrs, sequencing_enabled, batch_submitter_key_path)`
  builds and checks a `NodeConfig`. Sequencing requires a key file.
- `service.load_private_key(path)` reads a key file that contains 64 hex
  characters, optionally followed by a line ending, and returns the 32 raw
  bytes.

## Example

```python
from rollupnode.batch import BatchData, decode_batches, encode_batches
from rollupnode.rollup import RollupConfig
from rollupnode.service import new_log_config

with open("rollup.json") as fh:
    config = RollupConfig.from_json(fh.read())
config.check()

batches = [
    BatchData(epoch=0, timestamp=0, transactions=[]),
    BatchData(epoch=1, timestamp=1647026951, transactions=[b"\x00\x00\x00", b"\x76\xfd\x7c"]),
]
bundle = encode_batches(config, batches)
assert decode_batches(config, bundle) == batches
assert BatchData.unmarshal_binary(batches[1].marshal_binary()) == batches[1]

logger = new_log_config("info", "text", None).new_logger()
logger.info("config loaded")
```

## What it does not do

This package is a library. It has no command-line program, and it starts no
node process. It contains no JSON-RPC client for L1 nodes or L2 engines, no
L1 head subscription, and no batch submitter that signs and sends
transactions. The chain sources, `Engine`, `Downloader` and `BatchSubmitter`
are protocols that you implement. It does not recover transaction senders
from signatures, and it does not compute block hashes.

## Tests

The test suite uses pytest and pytest-asyncio. Both are in the `test` extra:

```
pip install -e ".[test]"
pytest
```