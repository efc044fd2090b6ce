"""Filter for chain-sync events by address, asset, policy or pool."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable, Iterator
from typing import Any

from .event import Event
from .events import BlockEvent, TransactionEvent
from .ledger import (
    PoolRegistrationCertificate,
    PoolRetirementCertificate,
    StakeDelegationCertificate,
    StakeDeregistrationCertificate,
    asset_fingerprint,
    bech32_encode,
    convert_bits,
)

_QUEUE_SIZE = 10
_POLL_INTERVAL = 0.05
_HASH28_SIZE = 28


def _hash28(data: bytes) -> bytes:
    return bytes(data[:_HASH28_SIZE]).ljust(_HASH28_SIZE, b"\0")


def _bech32(hrp: str, data: bytes) -> str:
    return bech32_encode(hrp, convert_bits(data, 8, 5, True))


def _split(value: str) -> list[str] | None:
    return value.split(",") if value else None


class ChainSyncFilter:
    """Passes on chain-sync events that match every configured filter.

    Each kind of filter is satisfied when any of its values matches; a kind
    with no values configured lets every event through.
    """

    def __init__(
        self,
        logger: Any = None,
        addresses: Iterable[str] | None = None,
        asset_fingerprints: Iterable[str] | None = None,
        policy_ids: Iterable[str] | None = None,
        pool_ids: Iterable[str] | None = None,
    ) -> None:
        self.logger = logger or logging.getLogger("adder.filter.chainsync")
        self.addresses = tuple(addresses or ())
        self.asset_fingerprints = tuple(asset_fingerprints or ())
        self.policy_ids = tuple(policy_ids or ())
        self.pool_ids = tuple(pool_ids or ())
        self._input: queue.Queue[Event] = queue.Queue(_QUEUE_SIZE)
        self._output: queue.Queue[Event] = queue.Queue(_QUEUE_SIZE)
        self._stopping = threading.Event()
        self._worker: threading.Thread | None = None

    # Matching

    def accepts(self, evt: Event) -> bool:
        """Return whether the event passes the configured filters."""
        payload = evt.payload
        if isinstance(payload, BlockEvent):
            return not self.pool_ids or self._block_pool_matches(payload)
        if isinstance(payload, TransactionEvent):
            if self.addresses and not self._address_matches(payload):
                return False
            if self.policy_ids and not self._policy_matches(payload):
                return False
            if self.asset_fingerprints and not self._fingerprint_matches(payload):
                return False
            if self.pool_ids and not self._tx_pool_matches(payload):
                return False
        return True

    def _block_pool_matches(self, block: BlockEvent) -> bool:
        for pool_id in self.pool_ids:
            if block.issuer_vkey == pool_id:
                return True
            if not pool_id.startswith("pool"):
                continue
            try:
                issuer = bytes.fromhex(block.issuer_vkey)
            except ValueError:
                continue
            if _bech32("pool", issuer) == pool_id:
                return True
        return False

    @staticmethod
    def _all_outputs(tx: TransactionEvent) -> Iterator[Any]:
        yield from tx.outputs
        yield from tx.resolved_inputs

    def _address_matches(self, tx: TransactionEvent) -> bool:
        return any(self._one_address_matches(tx, addr) for addr in self.addresses)

    def _one_address_matches(self, tx: TransactionEvent, wanted: str) -> bool:
        is_stake = wanted.startswith("stake")
        for output in self._all_outputs(tx):
            if str(output.address) == wanted:
                return True
            if is_stake:
                stake = output.address.stake_address()
                if stake is not None and str(stake) == wanted:
                    return True
        if not is_stake:
            return False
        for cert in tx.certificates:
            if isinstance(cert, StakeDelegationCertificate):
                cred_hash = cert.stake_credential.hash()
            elif isinstance(cert, StakeDeregistrationCertificate):
                cred_hash = cert.stake_deregistration.hash()
            else:
                continue
            if _bech32("stake", cred_hash) == wanted:
                return True
        return False

    def _policy_matches(self, tx: TransactionEvent) -> bool:
        policies = {
            bytes(policy).hex()
            for output in self._all_outputs(tx)
            if output.assets is not None
            for policy in output.assets.policies()
        }
        return any(policy_id in policies for policy_id in self.policy_ids)

    def _fingerprint_matches(self, tx: TransactionEvent) -> bool:
        fingerprints = {
            asset_fingerprint(policy, name)
            for output in self._all_outputs(tx)
            if output.assets is not None
            for policy in output.assets.policies()
            for name in output.assets.assets(policy)
        }
        return any(fp in fingerprints for fp in self.asset_fingerprints)

    def _tx_pool_matches(self, tx: TransactionEvent) -> bool:
        for pool_id in self.pool_ids:
            is_bech32 = pool_id.startswith("pool")
            for cert in tx.certificates:
                if isinstance(
                    cert, (StakeDelegationCertificate, PoolRetirementCertificate)
                ):
                    key_hash = cert.pool_key_hash
                elif isinstance(cert, PoolRegistrationCertificate):
                    key_hash = cert.operator
                else:
                    continue
                if _hash28(key_hash).hex() == pool_id:
                    return True
                if is_bech32 and _bech32("pool", bytes(cert.cbor)) == pool_id:
                    return True
        return False

    # Running

    def start(self) -> None:
        """Start passing events from the input to the output queue."""
        if self._stopping.is_set():
            raise RuntimeError("filter is stopped")
        if self._worker is not None:
            return
        self._worker = threading.Thread(target=self._run, daemon=True)
        self._worker.start()

    def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                evt = self._input.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            if self.accepts(evt):
                self._output.put(evt)

    def stop(self) -> None:
        """Stop the filter; it cannot be restarted."""
        if self._stopping.is_set():
            raise RuntimeError("filter is already stopped")
        self._stopping.set()
        if self._worker is not None:
            self._worker.join(timeout=1.0)

    def put(self, evt: Event) -> None:
        """Hand an event to the filter."""
        if self._stopping.is_set():
            raise RuntimeError("filter is stopped")
        self._input.put(evt)

    def get(self, timeout: float | None = None) -> Event:
        """Return the next event that passed the filter."""
        try:
            return self._output.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no event passed the filter in time") from None

    def __enter__(self) -> ChainSyncFilter:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        if not self._stopping.is_set():
            self.stop()


def new_from_options(
    address: str = "",
    asset: str = "",
    policy: str = "",
    pool: str = "",
    logger: Any = None,
) -> ChainSyncFilter:
    """Build a filter from comma-separated option values."""
    return ChainSyncFilter(
        logger=logger or logging.getLogger("adder.filter.chainsync"),
        addresses=_split(address),
        asset_fingerprints=_split(asset),
        policy_ids=_split(policy),
        pool_ids=_split(pool),
    )