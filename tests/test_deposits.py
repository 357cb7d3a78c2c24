import random
from dataclasses import dataclass

import pytest

from rollupnode import rlp
from rollupnode.deposits import (
    DEPOSIT_CONTRACT_ADDR,
    DEPOSIT_EVENT_ABI_HASH,
    L1_INFO_FUNC_BYTES4,
    L1_INFO_PREDEPLOY_ADDR,
    RECEIPT_STATUS_FAILED,
    RECEIPT_STATUS_SUCCESSFUL,
    DepositError,
    DepositTx,
    L1BlockInfo,
    L2Block,
    Log,
    Receipt,
    block_references,
    derive_deposits,
    l1_info_deposit,
    l1_info_deposit_bytes,
    l1_info_deposit_tx_data,
    unmarshal_log_event,
    user_deposits,
)
from rollupnode.rollup import BlockID, Genesis, L2BlockRef

GWEI = 10**9
EMPTY_ROOT_HASH = bytes.fromhex(
    "56e81f171bcc55a6ff8345e692c0f86e5b48e01b996cadc001622fb5e363b421"
)


def random_hash(rng):
    return rng.randbytes(32)


def random_l1_info(rng, **overrides):
    values = dict(
        number=rng.getrandbits(64),
        time=rng.getrandbits(64),
        hash=random_hash(rng),
        base_fee=rng.randrange(1_000_000 * GWEI),
        receipt_hash=EMPTY_ROOT_HASH,
    )
    values.update(overrides)
    return L1BlockInfo(**values)


INFO_CASES = [
    ("random", {}),
    ("zero basefee", {"base_fee": 0}),
    ("zero time", {"time": 0}),
    ("zero num", {"number": 0}),
]


@pytest.mark.parametrize("index,case", list(enumerate(INFO_CASES)), ids=[c[0] for c in INFO_CASES])
def test_parse_l1_info_deposit_tx_data(index, case):
    _, overrides = case
    info = random_l1_info(random.Random(1234 + index), **overrides)
    dep = l1_info_deposit(info)
    number, time, base_fee, block_hash = l1_info_deposit_tx_data(dep.data)
    assert number == info.number
    assert time == info.time
    assert base_fee >= 0
    assert base_fee == info.base_fee
    assert block_hash == info.hash


def test_parse_l1_info_all_zero():
    info = L1BlockInfo()
    number, time, base_fee, block_hash = l1_info_deposit_tx_data(l1_info_deposit(info).data)
    assert (number, time, base_fee, block_hash) == (0, 0, 0, bytes(32))


@pytest.mark.parametrize("data", [None, b"", bytes([1, 2, 3, 4]), bytes(4 + 8 + 8 + 32 + 32 + 1)])
def test_parse_l1_info_bad_length(data):
    with pytest.raises(DepositError):
        l1_info_deposit_tx_data(data)


def test_l1_info_deposit_fields():
    info = random_l1_info(random.Random(7))
    dep = l1_info_deposit(info)
    assert dep.block_height == info.number
    assert dep.transaction_index == 0
    assert dep.from_address == DEPOSIT_CONTRACT_ADDR
    assert dep.to == L1_INFO_PREDEPLOY_ADDR
    assert dep.mint is None
    assert dep.value == 0
    assert dep.gas == 99_999_999
    assert len(dep.data) == 84
    assert dep.data[:4] == L1_INFO_FUNC_BYTES4


def test_l1_info_deposit_rejects_oversized_base_fee():
    with pytest.raises(DepositError):
        l1_info_deposit(L1BlockInfo(base_fee=1 << 256))


def rand_eth(rng, maximum, minimum=0):
    return rng.randrange(minimum, maximum) * 10**18


def generate_deposit(block_num, tx_index, rng):
    data = rng.randbytes(rng.randrange(10_000))
    to = rng.randbytes(20) if rng.randrange(2) == 0 else None
    mint = rand_eth(rng, 200, minimum=1) if rng.randrange(2) == 0 else None
    return DepositTx(
        block_height=block_num,
        transaction_index=tx_index,
        from_address=rng.randbytes(20),
        to=to,
        mint=mint,
        value=rand_eth(rng, 200),
        gas=rng.randrange(10_000_000),
        data=data,
    )


def generate_deposit_log(deposit):
    to_topic = bytes(12) + deposit.to if deposit.to is not None else bytes(32)
    topics = (DEPOSIT_EVENT_ABI_HASH, bytes(12) + deposit.from_address, to_topic)
    data = b"".join(
        word.to_bytes(32, "big")
        for word in (
            deposit.value,
            deposit.mint or 0,
            deposit.gas,
            1 if deposit.to is None else 0,
            5 * 32,
            len(deposit.data),
        )
    )
    data += deposit.data
    if len(data) % 32:
        data += bytes(32 - len(data) % 32)
    return Log(address=DEPOSIT_CONTRACT_ADDR, topics=topics, data=data)


@pytest.mark.parametrize("i", range(100))
def test_unmarshal_log_event(i):
    rng = random.Random(1234 + i)
    block_num = rng.getrandbits(64)
    tx_index = rng.randrange(10_000)
    dep_input = generate_deposit(block_num, tx_index, rng)
    dep_output = unmarshal_log_event(block_num, tx_index, generate_deposit_log(dep_input))
    assert dep_output == dep_input


def _valid_log():
    dep = DepositTx(from_address=b"\x11" * 20, to=b"\x22" * 20, value=1, gas=2, data=b"abc")
    return generate_deposit_log(dep)


def _with_word(log, index, value):
    data = bytearray(log.data)
    data[index * 32 : (index + 1) * 32] = value.to_bytes(32, "big")
    return Log(address=log.address, topics=log.topics, data=bytes(data))


def test_unmarshal_log_event_errors():
    log = _valid_log()
    with pytest.raises(DepositError, match="3 event topics"):
        unmarshal_log_event(1, 1, Log(address=log.address, topics=log.topics[:2], data=log.data))
    with pytest.raises(DepositError, match="selector"):
        unmarshal_log_event(1, 1, Log(topics=(bytes(32),) + log.topics[1:], data=log.data))
    with pytest.raises(DepositError, match="too small"):
        unmarshal_log_event(1, 1, Log(topics=log.topics, data=log.data[:191]))
    with pytest.raises(DepositError, match="bad gas"):
        unmarshal_log_event(1, 1, _with_word(log, 2, 1 << 64))
    with pytest.raises(DepositError, match="incorrect data offset"):
        unmarshal_log_event(1, 1, _with_word(log, 4, 128))
    with pytest.raises(DepositError, match="data too large"):
        unmarshal_log_event(1, 1, _with_word(log, 5, 1 << 64))
    with pytest.raises(DepositError, match="data length too long"):
        unmarshal_log_event(1, 1, _with_word(log, 5, 33))


DERIVE_CASES = [
    ("no deposits", 100, []),
    ("other log", 100, [(True, [False])]),
    ("success deposit", 100, [(True, [True])]),
    ("failed deposit", 100, [(False, [True])]),
    ("mixed deposits", 100, [(True, [True]), (False, [True])]),
    ("success multiple logs", 100, [(True, [True, True])]),
    ("failed multiple logs", 100, [(False, [True, True])]),
    ("not all deposit logs", 100, [(True, [True, False, True])]),
    ("random", 100, [(True, [False, False, True]), (False, []), (True, [True])]),
]


@pytest.mark.parametrize(
    "index,case", list(enumerate(DERIVE_CASES)), ids=[c[0] for c in DERIVE_CASES]
)
def test_derive_user_deposits(index, case):
    _, height, receipt_specs = case
    rng = random.Random(1234 + index)
    receipts = []
    expected = []
    for good, deposit_flags in receipt_specs:
        status = RECEIPT_STATUS_SUCCESSFUL if good else RECEIPT_STATUS_FAILED
        logs = []
        for is_deposit in deposit_flags:
            if is_deposit:
                dep = generate_deposit(height, 1 + len(expected), rng)
                if good:
                    expected.append(dep)
                logs.append(generate_deposit_log(dep))
            else:
                logs.append(Log(address=rng.randbytes(20)))
        receipts.append(Receipt(status=status, logs=tuple(logs)))
    got = user_deposits(height, receipts)
    assert len(got) == len(expected)
    assert got == expected


def test_user_deposits_malformed_log():
    bad = Log(address=DEPOSIT_CONTRACT_ADDR, topics=(), data=b"")
    with pytest.raises(DepositError, match="malformatted L1 deposit log"):
        user_deposits(1, [Receipt(logs=(bad,))])


def test_deposit_marshal_binary():
    dep = DepositTx(
        block_height=7,
        transaction_index=1,
        from_address=b"\x11" * 20,
        value=5,
        gas=21000,
        data=b"\xab",
    )
    enc = dep.marshal_binary()
    assert enc[0] == 0x7E
    assert rlp.decode(enc[1:]) == [
        b"\x07",
        b"\x01",
        b"\x11" * 20,
        b"",
        b"",
        b"\x05",
        (21000).to_bytes(2, "big"),
        b"\xab",
    ]


def test_derive_deposits_encodes_each_deposit():
    rng = random.Random(99)
    deps = [generate_deposit(55, i + 1, rng) for i in range(3)]
    receipts = [Receipt(logs=tuple(generate_deposit_log(d) for d in deps))]
    encoded = derive_deposits(55, receipts)
    assert encoded == [d.marshal_binary() for d in deps]
    assert all(tx[0] == 0x7E for tx in encoded)


def test_derive_deposits_wraps_errors():
    bad = Log(address=DEPOSIT_CONTRACT_ADDR, topics=(), data=b"")
    with pytest.raises(DepositError, match="failed to derive user deposits"):
        derive_deposits(1, [Receipt(logs=(bad,))])


def test_l1_info_deposit_bytes_round_trip():
    info = random_l1_info(random.Random(3))
    enc = l1_info_deposit_bytes(info)
    assert enc[0] == 0x7E
    fields = rlp.decode(enc[1:])
    assert l1_info_deposit_tx_data(fields[7])[3] == info.hash


@dataclass(frozen=True)
class _PlainTx:
    tx_type: int
    data: bytes = b""


GENESIS = Genesis(l1=BlockID(b"\x0a" * 32, 10), l2=BlockID(b"\x0b" * 32, 0))


def test_block_references_genesis():
    block = L2Block(hash=b"\x0b" * 32, number=0)
    assert block_references(block, GENESIS) == L2BlockRef(
        id=BlockID(b"\x0b" * 32, 0), l1_origin=GENESIS.l1
    )


def test_block_references_unexpected_genesis():
    with pytest.raises(DepositError, match="unexpected L2 genesis block"):
        block_references(L2Block(hash=b"\x0c" * 32, number=0), GENESIS)


def test_block_references_from_l1_info():
    info = L1BlockInfo(number=42, time=1000, hash=b"\x33" * 32, base_fee=7)
    block = L2Block(
        hash=b"\x44" * 32,
        number=5,
        parent_hash=b"\x55" * 32,
        transactions=(l1_info_deposit(info), _PlainTx(2)),
    )
    assert block_references(block, GENESIS) == L2BlockRef(
        id=BlockID(b"\x44" * 32, 5),
        parent=BlockID(b"\x55" * 32, 4),
        l1_origin=BlockID(b"\x33" * 32, 42),
    )


@pytest.mark.parametrize(
    "transactions,message",
    [
        ((), "missing L1 info deposit"),
        ((_PlainTx(2),), "missing L1 info deposit"),
        ((_PlainTx(0x7E, b"\x00" * 10),), "failed to parse L1 info"),
    ],
)
def test_block_references_errors(transactions, message):
    block = L2Block(hash=b"\x44" * 32, number=5, transactions=transactions)
    with pytest.raises(DepositError, match=message):
        block_references(block, GENESIS)