"""Chain-sync input: follows a node and emits block, transaction and rollback events."""

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import requests

from .event import Event
from .events import (
    Point,
    new_block_context,
    new_block_event,
    new_block_header_context,
    new_rollback_event,
    new_transaction_context,
    new_transaction_event,
)
from .input_options import ChainSyncOptions
from .ledger import KupoMatch, ResolvedTransactionOutput, new_resolved_transaction_output

_CURSOR_CACHE_SIZE = 20
_MAX_AUTO_RECONNECT_DELAY = 60.0
_QUEUE_SIZE = 10
_POLL_INTERVAL = 0.05
_MAX_UINT32 = 2**32 - 1
_KUPO_HEALTH_TIMEOUT = 2.0
_KUPO_REQUEST_TIMEOUT = 30.0


@dataclass
class ChainSyncStatus:
    """Progress of a chain sync, as reported to status callbacks."""

    slot_number: int = 0
    block_number: int = 0
    block_hash: str = ""
    tip_slot_number: int = 0
    tip_block_hash: str = ""
    tip_reached: bool = False


@dataclass(frozen=True)
class Network:
    """A well-known Cardano network."""

    name: str
    network_magic: int
    bootstrap_peers: tuple[tuple[str, int], ...] = ()


_NETWORKS = {
    network.name: network
    for network in (
        Network("mainnet", 764824073, (("backbone.cardano.iog.io", 3001),)),
        Network("preprod", 1, (("preprod-node.play.dev.cardano.org", 3001),)),
        Network("preview", 2, (("preview-node.play.dev.cardano.org", 3001),)),
        Network("sanchonet", 4, (("sanchonet-node.play.dev.cardano.org", 3001),)),
        Network("devnet", 42),
        Network("testnet", 1097911063),
    )
}


def network_by_name(name: str) -> Network:
    """Return the well-known network with this name."""
    try:
        return _NETWORKS[name]
    except KeyError:
        raise KeyError(f"unknown network: {name}") from None


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


class _KupoClient:
    """Minimal client for a Kupo indexer."""

    def __init__(self, url: str) -> None:
        self.url = url.rstrip("/")

    def check_health(self) -> None:
        try:
            resp = requests.get(self.url + "/health", timeout=_KUPO_HEALTH_TIMEOUT)
        except requests.RequestException as exc:
            raise ConnectionError(f"failed to perform health check: {exc}") from exc
        if resp is None:
            raise ConnectionError("health check response empty, aborting")
        if resp.status_code != 200:
            raise ConnectionError(
                f"health check failed with status code: {resp.status_code}"
            )

    def matches(self, tx_id: str, index: int) -> list[KupoMatch]:
        resp = requests.get(
            f"{self.url}/matches/{index}@{tx_id}", timeout=_KUPO_REQUEST_TIMEOUT
        )
        resp.raise_for_status()
        return [self._to_match(item) for item in resp.json()]

    @staticmethod
    def _to_match(item: dict[str, Any]) -> KupoMatch:
        raw_value = item.get("value") or {}
        value: dict[str, dict[str, int]] = {
            "ada": {"lovelace": int(raw_value.get("coins", 0))}
        }
        for key, amount in (raw_value.get("assets") or {}).items():
            policy, _, name = key.partition(".")
            value.setdefault(policy, {})[name] = int(amount)
        return KupoMatch(address=item["address"], value=value)


class ChainSyncInput:
    """Follows a node's chain and turns what it sees into events.

    The node connection is made by connection_factory, called with the
    keyword arguments network_magic, node_to_node, keep_alive, roll_forward,
    roll_backward, block_fetch_block and on_error. The connection it returns
    has dial(family, address), close(), a chain_sync client (start, sync,
    get_current_tip, get_available_block_range) and a block_fetch client
    (start, get_block_range, get_block) or None. Tips and points are Points.
    """

    def __init__(
        self,
        options: ChainSyncOptions | None = None,
        connection_factory: Callable[..., Any] | None = None,
        logger: Any = None,
        status_update: Callable[[ChainSyncStatus], None] | None = None,
    ) -> None:
        self.options = options or ChainSyncOptions()
        self.logger = (
            logger or self.options.logger or logging.getLogger("adder.input.chainsync")
        )
        self._status_update = status_update or self.options.status_update_func
        self._connection_factory = connection_factory
        self.network_magic = self.options.network_magic
        self.status = ChainSyncStatus()
        self._intersect_points = list(self.options.intersect_points)
        self._events: queue.Queue[Any] = queue.Queue(_QUEUE_SIZE)
        self._stopped = threading.Event()
        self._conn: Any = None
        self._dial_family = ""
        self._dial_address = ""
        self._bulk_range_start = Point(0)
        self._bulk_range_end = Point(0)
        self._cursor_cache: list[Point] = []
        self._kupo: _KupoClient | None = None

    # Lifecycle

    def start(self) -> None:
        """Connect to the node and begin syncing."""
        if self._stopped.is_set():
            raise RuntimeError("input is stopped")
        self._setup_connection()
        chain_sync = self._conn.chain_sync
        block_fetch = self._conn.block_fetch
        chain_sync.start()
        if block_fetch is not None:
            block_fetch.start()
        if self.options.bulk_mode and not self.options.intersect_tip and block_fetch is not None:
            start, end = chain_sync.get_available_block_range(self._intersect_points)
            self._bulk_range_start, self._bulk_range_end = start, end
            if start.slot == 0 or end.slot == 0:
                # Already at the chain tip
                chain_sync.sync(self._intersect_points)
            else:
                block_fetch.get_block_range(start, end)
            return
        if self.options.intersect_tip:
            self._intersect_points = [chain_sync.get_current_tip()]
        chain_sync.sync(self._intersect_points)

    def stop(self) -> None:
        """Close the connection; pending events can still be read."""
        self._stopped.set()
        if self._conn is not None:
            self._conn.close()

    def get(self, timeout: float | None = None) -> Event:
        """Return the next event, raising a connection error if one arrived."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            wait = _POLL_INTERVAL
            if deadline is not None:
                wait = max(0.0, min(wait, deadline - time.monotonic()))
            try:
                item = self._events.get(timeout=wait)
            except queue.Empty:
                if self._stopped.is_set():
                    raise EOFError("input is stopped") from None
                if deadline is not None and time.monotonic() >= deadline:
                    raise TimeoutError("no event arrived in time") from None
                continue
            if isinstance(item, BaseException):
                raise item
            return item

    def __enter__(self) -> ChainSyncInput:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        if not self._stopped.is_set():
            self.stop()

    # Connection

    def _setup_connection(self) -> None:
        use_ntn = False
        if self.options.network:
            try:
                network = network_by_name(self.options.network)
            except KeyError:
                raise ValueError(f"unknown network: {self.options.network}") from None
            self.network_magic = network.network_magic
            if network.bootstrap_peers:
                host, port = network.bootstrap_peers[0]
                self._dial_family = "tcp"
                self._dial_address = f"{host}:{port}"
                use_ntn = True
        if self.options.address:
            self._dial_family = "tcp"
            self._dial_address = self.options.address
            use_ntn = not self.options.ntc_tcp
        elif self.options.socket_path:
            self._dial_family = "unix"
            self._dial_address = self.options.socket_path
            use_ntn = False
        elif not self._dial_family or not self._dial_address:
            raise ValueError(
                "you must specify a host/port, UNIX socket path, "
                "or well-known network name"
            )
        if self._connection_factory is None:
            raise RuntimeError("no connection factory configured")
        self._conn = self._connection_factory(
            network_magic=self.network_magic,
            node_to_node=use_ntn,
            keep_alive=True,
            roll_forward=self.handle_roll_forward,
            roll_backward=self.handle_roll_backward,
            block_fetch_block=self.handle_block_fetch_block,
            on_error=self._on_connection_error,
        )
        self._conn.dial(self._dial_family, self._dial_address)
        self.logger.info("connected to node at %s", self._dial_address)

    def _on_connection_error(self, err: BaseException) -> None:
        if self._stopped.is_set():
            return
        if self.options.auto_reconnect:
            threading.Thread(target=self._reconnect, args=(err,), daemon=True).start()
        else:
            self._events.put(err)

    def _reconnect(self, err: BaseException) -> None:
        delay = 0.0
        self.logger.info("reconnecting to %s due to error: %s", self._dial_address, err)
        while not self._stopped.is_set():
            if delay > 0:
                self.logger.info("waiting %ss to reconnect", delay)
                if self._stopped.wait(delay):
                    return
                delay = min(delay * 2, _MAX_AUTO_RECONNECT_DELAY)
            else:
                delay = 1.0
            try:
                self._conn.close()
            except Exception as exc:  # noqa: BLE001 - reported and ignored
                self.logger.warning("failed to properly close connection: %s", exc)
            if self._cursor_cache:
                self._intersect_points = list(self._cursor_cache)
            try:
                self.start()
            except Exception as exc:  # noqa: BLE001 - retried
                self.logger.info(
                    "reconnecting to %s due to error: %s", self._dial_address, exc
                )
                continue
            return

    # Protocol callbacks

    def _emit(self, event_type: str, context: Any, payload: Any) -> None:
        self._events.put(
            Event(event_type, datetime.now(timezone.utc), context, payload)
        )

    def _emit_transactions(self, block: Any) -> None:
        for index, transaction in enumerate(block.transactions):
            resolved = self.resolve_transaction_inputs(transaction)
            if index > _MAX_UINT32:
                raise ValueError("invalid number of transactions")
            self._emit(
                "chainsync.transaction",
                new_transaction_context(block, transaction, index, self.network_magic),
                new_transaction_event(
                    block, transaction, self.options.include_cbor, resolved
                ),
            )

    def handle_roll_backward(self, point: Point, tip: Point) -> None:
        """Emit a rollback event and move the status back to the point."""
        self._emit("chainsync.rollback", None, new_rollback_event(point))
        self.update_status(
            point.slot, 0, bytes(point.hash).hex(), tip.slot, bytes(tip.hash).hex()
        )

    def handle_roll_forward(self, block_data: Any, tip: Point) -> None:
        """Emit events for a new block, fetching the body if only a header came."""
        if hasattr(block_data, "transactions"):
            self._emit(
                "chainsync.block",
                new_block_context(block_data, self.network_magic),
                new_block_event(block_data, self.options.include_cbor),
            )
        else:
            point = Point(slot=block_data.slot_number, hash=bytes(block_data.hash))
            block = self._conn.block_fetch.get_block(point)
            if block is None:
                raise RuntimeError("blockfetch returned empty")
            self._emit(
                "chainsync.block",
                new_block_header_context(block_data),
                new_block_event(block, self.options.include_cbor),
            )
            self._emit_transactions(block)
        self.update_status(
            block_data.slot_number,
            block_data.block_number,
            _hex(block_data.hash),
            tip.slot,
            bytes(tip.hash).hex(),
        )

    def handle_block_fetch_block(self, block: Any) -> None:
        """Emit events for a block from a bulk fetch."""
        self._emit(
            "chainsync.block",
            new_block_context(block, self.network_magic),
            new_block_event(block, self.options.include_cbor),
        )
        self._emit_transactions(block)
        end = self._bulk_range_end
        self.update_status(
            block.slot_number,
            block.block_number,
            _hex(block.hash),
            end.slot,
            bytes(end.hash).hex(),
        )
        # Switch to normal chain sync after the last block of the bulk range
        if block.slot_number == end.slot:
            self._conn.chain_sync.sync([end])

    def update_status(
        self,
        slot_number: int,
        block_number: int,
        block_hash: str,
        tip_slot_number: int,
        tip_block_hash: str,
    ) -> None:
        """Record progress, remember the cursor and report the status."""
        try:
            hash_bytes = bytes.fromhex(block_hash)
        except ValueError:
            hash_bytes = b""
        self._cursor_cache.append(Point(slot=slot_number, hash=hash_bytes))
        del self._cursor_cache[:-_CURSOR_CACHE_SIZE]
        status = self.status
        if (
            not status.tip_reached
            and slot_number > self._bulk_range_end.slot
            and status.slot_number > 0
            and slot_number >= status.tip_slot_number
        ):
            status.tip_reached = True
        status.slot_number = slot_number
        status.block_number = block_number
        status.block_hash = block_hash
        status.tip_slot_number = tip_slot_number
        status.tip_block_hash = tip_block_hash
        if self._status_update is not None:
            self._status_update(dataclasses.replace(status))

    # Input resolution

    def _kupo_client(self) -> _KupoClient:
        if self._kupo is None:
            client = _KupoClient(self.options.kupo_url)
            client.check_health()
            self._kupo = client
        return self._kupo

    def resolve_transaction_inputs(
        self, transaction: Any
    ) -> list[ResolvedTransactionOutput]:
        """Look up the outputs spent by a transaction's inputs in Kupo."""
        resolved: list[ResolvedTransactionOutput] = []
        if not self.options.kupo_url:
            return resolved
        try:
            client = self._kupo_client()
        except ConnectionError as exc:
            raise ConnectionError(f"failed to get Kupo client: {exc}") from exc
        for tx_input in transaction.inputs:
            tx_id = _hex(tx_input.id)
            tx_index = int(tx_input.index)
            try:
                matches = client.matches(tx_id, tx_index)
            except (requests.RequestException, ValueError) as exc:
                raise ConnectionError(
                    f"error fetching matches for input TxId: {tx_id}, "
                    f"Index: {tx_index}. Error: {exc}"
                ) from exc
            if not matches:
                self.logger.info(
                    "no matches found for input TxId: %s, Index: %d, "
                    "could be due to Kupo not in sync",
                    tx_id,
                    tx_index,
                )
                continue
            self.logger.debug(
                "found matches %d for input TxId: %s, Index: %d",
                len(matches),
                tx_id,
                tx_index,
            )
            for match in matches:
                self.logger.debug("Match: %r", match)
                resolved.append(new_resolved_transaction_output(match))
        return resolved