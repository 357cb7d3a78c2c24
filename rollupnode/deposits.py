"""Deposit transactions derived from L1: user deposits, the L1 info deposit and its inverse."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

from Crypto.Hash import keccak

from . import rlp
from .batch import DEPOSIT_TX_TYPE
from .rollup import ZERO_ADDRESS, ZERO_HASH, BlockID, Genesis, L2BlockRef

_UINT64_MAX = (1 << 64) - 1
_WORD = 32
_L1_INFO_DATA_LENGTH = 4 + 8 + 8 + 32 + 32

RECEIPT_STATUS_FAILED = 0
RECEIPT_STATUS_SUCCESSFUL = 1


def _keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


DEPOSIT_EVENT_ABI = "TransactionDeposited(address,address,uint256,uint256,uint256,bool,bytes)"
DEPOSIT_EVENT_ABI_HASH = _keccak256(DEPOSIT_EVENT_ABI.encode())
DEPOSIT_CONTRACT_ADDR = bytes.fromhex("deaddeaddeaddeaddeaddeaddeaddeaddead0001")
L1_INFO_FUNC_SIGNATURE = (
    "setL1BlockValues(uint256 _number, uint256 _timestamp, uint256 _basefee, bytes32 _hash)"
)
L1_INFO_FUNC_BYTES4 = _keccak256(L1_INFO_FUNC_SIGNATURE.encode())[:4]
L1_INFO_PREDEPLOY_ADDR = bytes.fromhex("42" * 20)


class DepositError(ValueError):
    """Raised when deposit data cannot be parsed or built."""


@dataclass
class DepositTx:
    """A deposit transaction on L2, created from L1 data.

    ``to`` is None for contract creation; ``mint`` is None when nothing is minted.
    """

    block_height: int = 0
    transaction_index: int = 0
    from_address: bytes = ZERO_ADDRESS
    to: Optional[bytes] = None
    mint: Optional[int] = None
    value: int = 0
    gas: int = 0
    data: bytes = b""

    @property
    def tx_type(self) -> int:
        return DEPOSIT_TX_TYPE

    def marshal_binary(self) -> bytes:
        """Return the typed transaction encoding: type byte followed by the RLP field list."""
        fields = [
            self.block_height,
            self.transaction_index,
            self.from_address,
            self.to if self.to is not None else b"",
            self.mint if self.mint is not None else b"",
            self.value,
            self.gas,
            self.data,
        ]
        try:
            return bytes([DEPOSIT_TX_TYPE]) + rlp.encode(fields)
        except (rlp.RLPError, TypeError) as exc:
            raise DepositError(f"failed to encode deposit tx: {exc}") from exc


@dataclass(frozen=True)
class Log:
    """An EVM log entry."""

    address: bytes = ZERO_ADDRESS
    topics: Tuple[bytes, ...] = ()
    data: bytes = b""


@dataclass(frozen=True)
class Receipt:
    """An L1 transaction receipt, reduced to what deposit derivation reads."""

    status: int = RECEIPT_STATUS_SUCCESSFUL
    logs: Tuple[Log, ...] = ()


@dataclass(frozen=True)
class L1BlockInfo:
    """Header information of an L1 block."""

    number: int = 0
    time: int = 0
    hash: bytes = ZERO_HASH
    base_fee: int = 0
    mix_digest: bytes = ZERO_HASH
    receipt_hash: bytes = ZERO_HASH


@dataclass(frozen=True)
class L2Block:
    """An L2 block; each transaction exposes ``tx_type`` and ``data``."""

    hash: bytes = ZERO_HASH
    number: int = 0
    parent_hash: bytes = ZERO_HASH
    transactions: tuple = field(default_factory=tuple)
    time: int = 0


def _word(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset : offset + _WORD], "big")


def unmarshal_log_event(block_num: int, tx_index: int, ev: Log) -> DepositTx:
    """Decode a TransactionDeposited log of the deposit contract into a deposit transaction."""
    if len(ev.topics) != 3:
        raise DepositError(
            "expected 3 event topics (event identity, indexed from, indexed to)"
        )
    if ev.topics[0] != DEPOSIT_EVENT_ABI_HASH:
        raise DepositError(
            f"invalid deposit event selector: 0x{bytes(ev.topics[0]).hex()}, "
            f"expected 0x{DEPOSIT_EVENT_ABI_HASH.hex()}"
        )
    data = bytes(ev.data)
    if len(data) < 6 * _WORD:
        raise DepositError(f"deposit event data too small ({len(data)} bytes): {data.hex()}")

    from_address = bytes(ev.topics[1])[12:]
    to = bytes(ev.topics[2])[12:]

    value = _word(data, 0)
    mint = _word(data, 32) or None
    gas = _word(data, 64)
    if gas > _UINT64_MAX:
        raise DepositError(f"bad gas value: {data[64:96].hex()}")
    is_creation = data[96 + 31] != 0
    data_offset = _word(data, 128)
    if data_offset == 128:
        raise DepositError(f"incorrect data offset: {data_offset}")
    data_len = _word(data, 160)
    if data_len > _UINT64_MAX:
        raise DepositError(f"data too large: {data_len}")
    start = 6 * _WORD
    max_expected = len(data) - start
    if data_len > max_expected:
        raise DepositError(f"data length too long: {data_len}, expected max {max_expected}")

    return DepositTx(
        block_height=block_num,
        transaction_index=tx_index,
        from_address=from_address,
        to=None if is_creation else to,
        mint=mint,
        value=value,
        gas=gas,
        data=data[start : start + data_len],
    )


def l1_info_deposit(block: L1BlockInfo) -> DepositTx:
    """Build the deposit that records the L1 block's number, time, base fee and hash on L2."""
    if block.base_fee < 0 or block.base_fee.bit_length() > 256:
        raise DepositError(f"base fee does not fit in 32 bytes: {block.base_fee}")
    data = (
        L1_INFO_FUNC_BYTES4
        + block.number.to_bytes(8, "big")
        + block.time.to_bytes(8, "big")
        + block.base_fee.to_bytes(32, "big")
        + bytes(block.hash)
    )
    return DepositTx(
        block_height=block.number,
        transaction_index=0,
        from_address=DEPOSIT_CONTRACT_ADDR,
        to=L1_INFO_PREDEPLOY_ADDR,
        mint=None,
        value=0,
        gas=99_999_999,
        data=data,
    )


def l1_info_deposit_tx_data(data) -> Tuple[int, int, int, bytes]:
    """Parse L1 info deposit data back into (number, time, base_fee, block_hash)."""
    data = bytes(data or b"")
    if len(data) != _L1_INFO_DATA_LENGTH:
        raise DepositError(f"data is unexpected length: {len(data)}")
    number = int.from_bytes(data[4:12], "big")
    time = int.from_bytes(data[12:20], "big")
    base_fee = int.from_bytes(data[20:52], "big")
    block_hash = data[52:84]
    return number, time, base_fee, block_hash


def user_deposits(l2_block_height: int, receipts: Iterable[Receipt]) -> list:
    """Collect the deposits of successful receipts, indexed from 1 after the L1 info deposit."""
    out = []
    for receipt in receipts:
        if receipt.status != RECEIPT_STATUS_SUCCESSFUL:
            continue
        for log in receipt.logs:
            if log.address != DEPOSIT_CONTRACT_ADDR:
                continue
            try:
                out.append(unmarshal_log_event(l2_block_height, len(out) + 1, log))
            except DepositError as exc:
                raise DepositError(f"malformatted L1 deposit log: {exc}") from exc
    return out


def l1_info_deposit_bytes(l1_info: L1BlockInfo) -> bytes:
    """Return the encoded L1 info deposit transaction."""
    try:
        return l1_info_deposit(l1_info).marshal_binary()
    except DepositError as exc:
        raise DepositError("failed to encode L1 info tx") from exc


def derive_deposits(l2_block_height: int, receipts: Iterable[Receipt]) -> list:
    """Return the encoded user deposit transactions for an L2 block."""
    try:
        deposits = user_deposits(l2_block_height, receipts)
    except DepositError as exc:
        raise DepositError(f"failed to derive user deposits: {exc}") from exc
    encoded = []
    for index, tx in enumerate(deposits):
        try:
            encoded.append(tx.marshal_binary())
        except DepositError as exc:
            raise DepositError(f"failed to encode user tx {index}") from exc
    return encoded


def block_references(l2_block: L2Block, genesis: Genesis) -> L2BlockRef:
    """Determine an L2 block's own id, its L2 parent and the L1 block it was derived from."""
    self_id = BlockID(l2_block.hash, l2_block.number)
    if self_id.number <= genesis.l2.number:
        if self_id.hash != genesis.l2.hash:
            raise DepositError(f"unexpected L2 genesis block: {self_id}, expected {genesis.l2}")
        return L2BlockRef(id=self_id, l1_origin=genesis.l1)

    parent = BlockID(l2_block.parent_hash, l2_block.number - 1)
    txs = l2_block.transactions
    if not txs or txs[0].tx_type != DEPOSIT_TX_TYPE:
        raise DepositError(
            f"l2 block is missing L1 info deposit tx, block hash: 0x{bytes(l2_block.hash).hex()}"
        )
    try:
        l1_number, _, _, l1_hash = l1_info_deposit_tx_data(txs[0].data)
    except DepositError as exc:
        raise DepositError(f"failed to parse L1 info deposit tx from L2 block: {exc}") from exc
    return L2BlockRef(id=self_id, parent=parent, l1_origin=BlockID(l1_hash, l1_number))