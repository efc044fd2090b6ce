# adder

`adder` turns what a Cardano node reports during chain sync into a stream of
events. It emits one event per block, one per transaction and one per
rollback. Filters then pass on only the events that a consumer wants.

## Events

Every event is an `adder.event.Event`. An event holds a `type`, a
`timestamp`, an optional `context` and a `payload`. The chain-sync input
produces these types:

| Type                    | Context              | Payload            |
|-------------------------|----------------------|--------------------|
| `chainsync.block`       | `BlockContext`       | `BlockEvent`       |
| `chainsync.transaction` | `TransactionContext` | `TransactionEvent` |
| `chainsync.rollback`    | none                 | `RollbackEvent`    |

The context and payload classes live in `adder.events`, next to `Point` (a
slot number and a block hash). These factory functions build them:

- `new_block_context`
- `new_block_header_context`
- `new_block_event`
- `new_rollback_event`
- `new_transaction_context`
- `new_transaction_event`

`Event.to_dict()` returns a plain dictionary that is ready for JSON. Keys are
written in camelCase, and a missing context is left out. Block and
transaction CBOR appears as a hex string, and only when it was included.
Optional transaction fields are left out when they are empty. These are the
certificates, reference inputs, metadata, TTL, resolved inputs and
withdrawals.

## Ledger helpers

`adder.ledger` holds the Cardano ledger logic that the filters and the input
use.

- `bech32_encode`, `bech32_decode` and `convert_bits` handle bech32 text.
- `blake2b224` hashes bytes. `asset_fingerprint` gives `asset1...`
  fingerprints.
- `Address` holds an address. `Address.parse` accepts bech32 (Shelley) and
  base58 (Byron) strings. `Address.stake_address()` returns the reward
  address, and `str()` gives the text form back.
- `MultiAsset` holds policies and asset names. Its `to_json()` lists each
  asset with its name, hex name, policy ID, fingerprint and amount.
- `Credential` holds a credential, and the certificate classes use it. The
  certificate classes are `StakeDelegationCertificate`,
  `StakeDeregistrationCertificate`, `PoolRegistrationCertificate` and
  `PoolRetirementCertificate`.
- `KupoMatch` holds a match reported by a Kupo indexer.
  `extract_asset_details_from_match` splits a match into its native assets
  and its lovelace. `new_resolved_transaction_output` builds a
  `ResolvedTransactionOutput` from a match.

## Filtering

`adder.chainsync_filter.ChainSyncFilter` passes on the chain-sync events that
match every configured criterion. A criterion is satisfied when any one of
its values matches. The criteria are:

- addresses, matched against outputs and resolved inputs. A `stake...`
  address also matches the stake part of output addresses, and the stake
  delegation and deregistration certificates.
- policy IDs, given as hex.
- asset fingerprints, given as `asset1...`.
- pool IDs, given as hex or as `pool...` bech32. A pool ID is matched against
  the block issuer, and against pool-related certificates in transactions.

A criterion with no values lets every event through. Events whose payload is
neither a `BlockEvent` nor a `TransactionEvent` always pass.

```python
from adder.chainsync_filter import new_from_options

flt = new_from_options(address="addr1...,stake1...", asset="", policy="", pool="", logger=None)
flt.start()
flt.put(evt)
passed = flt.get(timeout=1.0)  # raises TimeoutError if nothing passed
flt.stop()
```

Each option of `new_from_options` takes a comma-separated list. An empty
string switches that criterion off.

`adder.event_filter.EventFilter` filters on the top-level event type.
`adder.event_filter.new_from_options` builds one:

```python
from adder.event_filter import new_from_options

flt = new_from_options(event_type="chainsync.block,chainsync.rollback", logger=None)
```

Both filters work as context managers. Entering starts the filter and
leaving stops it. A filter cannot be restarted after `stop()`. To check one
event without the queues, call `accepts(evt)`.

## Chain-sync input

`adder.input_options.ChainSyncOptions` holds the settings for the input. The
defaults of the dataclass are:

- intersect at the chain genesis;
- no auto-reconnect;
- no named network.

`options_from_cmdline` builds the options from command-line style values.
Its defaults are different:

- the `mainnet` network;
- intersect at the tip;
- auto-reconnect on.

A network magic outside the 32-bit range falls back to 0. Explicit intersect
points take the place of the intersect-tip setting. `parse_intersect_points`
parses the points. They are written as `<slot>.<hash>` and separated by
commas, and a malformed point raises `ValueError`.

`adder.chainsync_input.ChainSyncInput` takes these options and a
`connection_factory`. On `start()`, it works out where to connect from the
settings. It uses the named network's bootstrap peer, the TCP address or the
UNIX socket path. It then calls the factory and dials the connection. From
there it follows the chain from the tip, from the intersect points or, in
bulk mode, by fetching the whole available block range.

`get(timeout)` returns the next event. It raises an error in these cases:

- `TimeoutError` if no event arrived in time;
- `EOFError` once the input is stopped and nothing is left to read;
- the connection error, when one occurred and auto-reconnect is off.

With auto-reconnect on, the input reconnects after an error. It starts with a
delay of one second and doubles it each time, up to 60 seconds. It resumes
from the last 20 points it saw.

The input keeps a `ChainSyncStatus` up to date, including whether the chain
tip has been reached. It passes a copy of the status to the optional
`status_update` callback on every change.

When a Kupo URL is set, the input looks up the outputs that each transaction
spends and adds them to the event as resolved inputs. It checks the URL's
`/health` endpoint first.

`network_by_name` returns the well-known networks: `mainnet`, `preprod`,
`preview`, `sanchonet`, `devnet` and `testnet`.

## What this package does not do

- It has no node protocol client of its own. The caller must supply the
  connection to a node through `connection_factory`, and the docstring of
  `ChainSyncInput` describes the interface it expects.
- It has no command-line program.
- It has no plugin registry and no pipeline runner that wires inputs, filters
  and outputs together.
- It has no output stages, such as writing events to a log or serving them
  over an API. Consumers read events from the queues themselves.