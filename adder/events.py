"""Chain-sync event payloads and their contexts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .event import _jsonable
from .ledger import blake2b224


@dataclass(frozen=True)
class Point:
    """A chain point: a slot number and a block hash."""

    slot: int
    hash: bytes = b""


@dataclass
class BlockContext:
    block_number: int = 0
    slot_number: int = 0
    network_magic: int = 0
    era: str = ""


@dataclass
class BlockEvent:
    block: Any = None
    block_body_size: int = 0
    issuer_vkey: str = ""
    block_hash: str = ""
    transaction_count: int = 0
    block_cbor: bytes = b""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "blockBodySize": self.block_body_size,
            "issuerVkey": self.issuer_vkey,
            "blockHash": self.block_hash,
        }
        if self.block_cbor:
            out["blockCbor"] = self.block_cbor.hex()
        out["transactionCount"] = self.transaction_count
        return out


@dataclass
class RollbackEvent:
    block_hash: str = ""
    slot_number: int = 0


@dataclass
class TransactionContext:
    block_number: int = 0
    slot_number: int = 0
    transaction_hash: str = ""
    transaction_idx: int = 0
    network_magic: int = 0


@dataclass
class TransactionEvent:
    transaction: Any = None
    block_hash: str = ""
    transaction_cbor: bytes = b""
    inputs: list[Any] = field(default_factory=list)
    outputs: list[Any] = field(default_factory=list)
    certificates: list[Any] = field(default_factory=list)
    reference_inputs: list[Any] = field(default_factory=list)
    metadata: Any = None
    fee: int = 0
    ttl: int = 0
    resolved_inputs: list[Any] = field(default_factory=list)
    withdrawals: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"blockHash": self.block_hash}
        if self.transaction_cbor:
            out["transactionCbor"] = self.transaction_cbor.hex()
        out["inputs"] = _jsonable(self.inputs)
        out["outputs"] = _jsonable(self.outputs)
        if self.certificates:
            out["certificates"] = _jsonable(self.certificates)
        if self.reference_inputs:
            out["referenceInputs"] = _jsonable(self.reference_inputs)
        if self.metadata is not None:
            out["metadata"] = _jsonable(self.metadata)
        out["fee"] = self.fee
        if self.ttl:
            out["ttl"] = self.ttl
        if self.resolved_inputs:
            out["resolvedInputs"] = _jsonable(self.resolved_inputs)
        if self.withdrawals:
            out["withdrawals"] = dict(self.withdrawals)
        return out


def new_block_context(block: Any, network_magic: int) -> BlockContext:
    """Context for a full block; block.era is the era name."""
    return BlockContext(
        block_number=block.block_number,
        slot_number=block.slot_number,
        network_magic=network_magic,
        era=block.era,
    )


def new_block_header_context(header: Any) -> BlockContext:
    """Context for a block header, which carries no network magic."""
    return BlockContext(
        block_number=header.block_number,
        slot_number=header.slot_number,
        era=header.era,
    )


def new_block_event(block: Any, include_cbor: bool) -> BlockEvent:
    """Payload for a block; the issuer is given by the hash of its key."""
    return BlockEvent(
        block=block,
        block_body_size=block.block_body_size,
        block_hash=bytes(block.hash).hex(),
        issuer_vkey=blake2b224(block.issuer_vkey).hex(),
        transaction_count=len(block.transactions),
        block_cbor=bytes(block.cbor) if include_cbor else b"",
    )


def new_rollback_event(point: Point) -> RollbackEvent:
    return RollbackEvent(block_hash=bytes(point.hash).hex(), slot_number=point.slot)


def new_transaction_context(
    block: Any, tx: Any, index: int, network_magic: int
) -> TransactionContext:
    return TransactionContext(
        block_number=block.block_number,
        slot_number=block.slot_number,
        transaction_hash=bytes(tx.hash).hex(),
        transaction_idx=index,
        network_magic=network_magic,
    )


def new_transaction_event(
    block: Any,
    tx: Any,
    include_cbor: bool,
    resolved_inputs: list[Any] | None = None,
) -> TransactionEvent:
    """Payload for a transaction, with optional parts left empty when absent."""
    evt = TransactionEvent(
        transaction=tx,
        block_hash=bytes(block.hash).hex(),
        inputs=list(tx.inputs),
        outputs=list(tx.outputs),
        fee=tx.fee,
    )
    if include_cbor:
        evt.transaction_cbor = bytes(tx.cbor)
    if tx.certificates is not None:
        evt.certificates = list(tx.certificates)
    if tx.metadata is not None:
        evt.metadata = tx.metadata
    if tx.reference_inputs is not None:
        evt.reference_inputs = list(tx.reference_inputs)
    if tx.ttl:
        evt.ttl = tx.ttl
    if resolved_inputs:
        evt.resolved_inputs = list(resolved_inputs)
    if tx.withdrawals:
        evt.withdrawals = {str(addr): amount for addr, amount in tx.withdrawals.items()}
    return evt