from types import SimpleNamespace

import pytest

from adder.events import (
    Point,
    new_block_context,
    new_block_event,
    new_block_header_context,
    new_rollback_event,
    new_transaction_context,
    new_transaction_event,
)
from adder.ledger import Address, ResolvedTransactionOutput, blake2b224

MAX64 = (1 << 64) - 1
MAX32 = (1 << 32) - 1


def make_block(number, slot, era, hash_seed, body_size, cbor, transactions=()):
    return SimpleNamespace(
        block_number=number,
        slot_number=slot,
        era=era,
        hash=blake2b224(hash_seed),
        issuer_vkey=bytes([1, 2, 3]),
        block_body_size=body_size,
        transactions=list(transactions),
        cbor=cbor,
    )


def make_tx(**overrides):
    values = dict(
        hash=bytes([9]) * 32,
        inputs=[],
        outputs=[],
        fee=170000,
        cbor=bytes([0x84]),
        certificates=None,
        metadata=None,
        reference_inputs=None,
        ttl=0,
        withdrawals={},
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.mark.parametrize(
    "block, magic, era, number, slot",
    [
        (make_block(1000, 5000, "Shelley", b"sample-hash-shelley", 1024, b"\x01\x02\x03"),
         764824073, "Shelley", 1000, 5000),
        (make_block(2500, 10000, "Allegra", b"another-hash-allegra", 2048, b"\x04\x05\x06"),
         1097911063, "Allegra", 2500, 10000),
        (make_block(5000, 25000, "Mary", b"mary-block-hash", 4096, b"\x07\x08\x09"),
         0, "Mary", 5000, 25000),
    ],
)
def test_new_block_context(block, magic, era, number, slot):
    ctx = new_block_context(block, magic)
    assert ctx.era == era
    assert ctx.block_number == number
    assert ctx.slot_number == slot
    assert ctx.network_magic == magic


@pytest.mark.parametrize(
    "block, magic, era",
    [
        (make_block(0, 0, "", b"", 0, b""), 0, ""),
        (make_block(MAX64, MAX64, "Alonzo", b"max-block-hash", MAX64, b"\x0a\x0b\x0c"),
         MAX32, "Alonzo"),
    ],
)
def test_new_block_context_edge_cases(block, magic, era):
    ctx = new_block_context(block, magic)
    assert ctx.era == era
    assert ctx.block_number == block.block_number
    assert ctx.slot_number == block.slot_number
    assert ctx.network_magic == magic


def test_new_block_header_context_has_no_magic():
    block = make_block(7, 8, "Babbage", b"h", 1, b"")
    ctx = new_block_header_context(block)
    assert (ctx.block_number, ctx.slot_number, ctx.era) == (7, 8, "Babbage")
    assert ctx.network_magic == 0


def test_new_block_event_without_cbor():
    block = make_block(1, 2, "Conway", b"h", 1024, b"\x01\x02", [make_tx(), make_tx()])
    evt = new_block_event(block, False)
    assert evt.block_hash == block.hash.hex()
    assert evt.issuer_vkey == blake2b224(block.issuer_vkey).hex()
    assert evt.transaction_count == 2
    assert evt.block_body_size == 1024
    assert evt.block_cbor == b""
    assert "blockCbor" not in evt.to_dict()


def test_new_block_event_with_cbor():
    block = make_block(1, 2, "Conway", b"h", 10, b"\x01\x02")
    d = new_block_event(block, True).to_dict()
    assert d["blockCbor"] == block.cbor.hex()
    assert d["blockHash"] == block.hash.hex()
    assert d["transactionCount"] == 0


def test_new_rollback_event():
    evt = new_rollback_event(Point(12345, bytes([1, 2, 3, 4, 5])))
    assert evt.block_hash == "0102030405"
    assert evt.slot_number == 12345


def test_new_transaction_context():
    block = make_block(3, 4, "Conway", b"h", 1, b"")
    tx = make_tx()
    ctx = new_transaction_context(block, tx, 2, 764824073)
    assert ctx.transaction_hash == tx.hash.hex()
    assert (ctx.block_number, ctx.slot_number) == (3, 4)
    assert ctx.transaction_idx == 2
    assert ctx.network_magic == 764824073


def test_new_transaction_event_minimal():
    block = make_block(3, 4, "Conway", b"h", 1, b"")
    tx = make_tx()
    evt = new_transaction_event(block, tx, False, [])
    d = evt.to_dict()
    assert d["blockHash"] == block.hash.hex()
    assert d["fee"] == tx.fee
    for key in ("ttl", "transactionCbor", "certificates", "resolvedInputs", "withdrawals"):
        assert key not in d


def test_new_transaction_event_full():
    block = make_block(3, 4, "Conway", b"h", 1, b"")
    reward = Address(bytes([0xE0]) + bytes(28))
    out = ResolvedTransactionOutput(address=reward, amount=5)
    tx = make_tx(ttl=99, withdrawals={reward: 42}, outputs=[out], certificates=[])
    evt = new_transaction_event(block, tx, True, [out])
    d = evt.to_dict()
    assert d["ttl"] == 99
    assert d["transactionCbor"] == tx.cbor.hex()
    assert d["withdrawals"] == {str(reward): 42}
    assert d["outputs"] == [out.to_dict()]
    assert d["resolvedInputs"] == [out.to_dict()]
    assert evt.transaction is tx