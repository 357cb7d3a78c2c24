"""Sequencer batches: their wire format, validation and extraction from L1 transactions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from . import rlp
from .rollup import RollupConfig

BATCH_V1_TYPE = 0
BATCH_BUNDLE_V1_TYPE = 0
BATCH_BUNDLE_V2_TYPE = 1
DEPOSIT_TX_TYPE = 0x7E

_UINT64_MOD = 1 << 64


class BatchError(ValueError):
    """Raised when a batch or bundle of batches cannot be encoded or decoded."""


def _decode_uint(value, what: str) -> int:
    if not isinstance(value, bytes):
        raise BatchError(f"{what}: expected a string, got a list")
    if value[:1] == b"\x00":
        raise BatchError(f"{what}: non-canonical integer (leading zero bytes)")
    if len(value) > 8:
        raise BatchError(f"{what}: integer overflows uint64")
    return int.from_bytes(value, "big")


@dataclass
class BatchData:
    """A version-1 sequencer batch: the transactions of one L2 block."""

    epoch: int = 0
    timestamp: int = 0
    transactions: list = field(default_factory=list)

    def marshal_binary(self) -> bytes:
        """Return the canonical typed encoding of the batch."""
        try:
            body = rlp.encode([self.epoch, self.timestamp, list(self.transactions)])
        except (rlp.RLPError, TypeError) as exc:
            raise BatchError(f"failed to encode batch: {exc}") from exc
        return bytes([BATCH_V1_TYPE]) + body

    @classmethod
    def unmarshal_binary(cls, data) -> "BatchData":
        """Decode the canonical typed encoding of a batch."""
        data = bytes(data)
        if not data:
            raise BatchError("batch too short")
        if data[0] != BATCH_V1_TYPE:
            raise BatchError(f"unrecognized batch type: {data[0]}")
        try:
            fields = rlp.decode(data[1:])
        except rlp.RLPError as exc:
            raise BatchError(f"failed to decode batch: {exc}") from exc
        if not isinstance(fields, list):
            raise BatchError("batch body must be a list")
        if len(fields) < 3:
            raise BatchError("batch body has too few elements")
        if len(fields) > 3:
            raise BatchError("batch body has too many elements")
        epoch_raw, timestamp_raw, txs_raw = fields
        if not isinstance(txs_raw, list) or not all(isinstance(tx, bytes) for tx in txs_raw):
            raise BatchError("batch transactions must be a list of strings")
        return cls(
            epoch=_decode_uint(epoch_raw, "epoch"),
            timestamp=_decode_uint(timestamp_raw, "timestamp"),
            transactions=list(txs_raw),
        )


@dataclass(frozen=True)
class L1Transaction:
    """The parts of an L1 transaction that batch extraction looks at.

    ``sender`` is the address recovered from the signature under the L1 chain's
    signer, or None when the signature does not verify.
    """

    to: Optional[bytes]
    data: bytes = b""
    sender: Optional[bytes] = None


def decode_batches(config: RollupConfig, data) -> list:
    """Decode a typed bundle of batches."""
    data = bytes(data)
    if not data:
        raise BatchError("failed to read batch bundle type byte: EOF")
    bundle_type, payload = data[0], data[1:]
    if bundle_type == BATCH_BUNDLE_V1_TYPE:
        try:
            items = rlp.decode(payload)
            if not isinstance(items, list):
                raise BatchError("expected a list of batches")
            batches = []
            for item in items:
                if not isinstance(item, bytes):
                    raise BatchError("expected a batch string, got a list")
                batches.append(BatchData.unmarshal_binary(item))
        except (rlp.RLPError, BatchError) as exc:
            raise BatchError(f"failed to decode v1 batches list: {exc}") from exc
        return batches
    if bundle_type == BATCH_BUNDLE_V2_TYPE:
        raise BatchError("bundle v2 not supported yet")
    raise BatchError(f"unrecognized batch bundle type: {bundle_type}")


def encode_batches(config: RollupConfig, batches: Iterable[BatchData]) -> bytes:
    """Encode batches as an uncompressed (v1) bundle."""
    encoded = [batch.marshal_binary() for batch in batches]
    return bytes([BATCH_BUNDLE_V1_TYPE]) + rlp.encode(encoded)


def valid_batch(
    batch: BatchData, config: RollupConfig, epoch: int, min_l2_time: int, max_l2_time: int
) -> bool:
    """Tell whether a batch may be used for the given epoch and L2 time range."""
    if batch.epoch != epoch:
        return False
    if ((batch.timestamp - config.genesis.l2_time) % _UINT64_MOD) % config.block_time != 0:
        return False
    if batch.timestamp < min_l2_time:
        return False
    if batch.timestamp >= max_l2_time:
        return False
    for tx in batch.transactions:
        if not tx:
            return False
        if tx[0] == DEPOSIT_TX_TYPE:
            return False
    return True


def filter_batches(
    config: RollupConfig, epoch: int, min_l2_time: int, max_l2_time: int, batches: Iterable[BatchData]
) -> list:
    """Keep valid batches, the first one per timestamp winning."""
    seen = set()
    out = []
    for batch in batches:
        if not valid_batch(batch, config, epoch, min_l2_time, max_l2_time):
            continue
        if batch.timestamp in seen:
            continue
        seen.add(batch.timestamp)
        out.append(batch)
    return out


def sorted_and_prepared_batches(
    batches: Iterable[BatchData], epoch: int, block_time: int, min_l2_time: int, max_l2_time: int
) -> list:
    """Return one batch per block slot, filling gaps with empty batches."""
    by_time = {batch.timestamp: batch for batch in batches}
    return [
        by_time.get(t) or BatchData(epoch=epoch, timestamp=t)
        for t in range(min_l2_time, max_l2_time, block_time)
    ]


def batches_from_evm_transactions(config: RollupConfig, txs: Iterable[L1Transaction]) -> list:
    """Collect batches from transactions sent to the inbox by the authorised sender."""
    out = []
    for tx in txs:
        if tx.to is None or tx.to != config.batch_inbox_address:
            continue
        if tx.sender is None:
            continue
        if tx.sender != config.batch_sender_address:
            continue
        try:
            out.extend(decode_batches(config, tx.data))
        except BatchError:
            continue
    return out