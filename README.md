# hornetstore

Building blocks for the storage side of a Nostr relay. The package has Nostr
events and filters, a versioned key/value store made of named trees, the stored
form of Merkle DAG leaves along with DAG reassembly, SQLite-backed relay
statistics and panel records, the tables that relay-to-relay sync relies on,
and the message framing used for negentropy sync.

## Installation

```
pip install hornetstore
```

The test suite needs the test extra:

```
pip install "hornetstore[test]"
pytest
```

## Modules

- `hornetstore.nostr` has `Event` and `Filter`, each with `to_dict` and
  `from_dict` for the JSON wire shape, and `Filter.matches`. It also has tag
  helpers: `contains_any`, `contains_any_with_wildcard` (the `f` and `d` tags
  match `/`-separated paths where `*` skips segments), `match_wildcard`,
  `is_single_letter` and `is_tag_query_tag`.
- `hornetstore.treestore` provides `TreeStore`, which keeps every committed
  version of every tree in SQLite, either in memory or in a directory.
  `TreeStore.load_snapshot(version)` returns a `Snapshot`; version 0 means the
  latest. `Snapshot.get_tree(name)` returns a `Tree` with `get`, `put`,
  `delete` and `items`. Changes stay pending until `commit(*trees)`, which
  writes them all as one new version. A missing key raises `KeyNotFound`.
- `hornetstore.dag` defines `LeafType`, `DagLeaf`, `DagLeafData` (stored as
  CBOR), `Dag`, `DagData` and `CacheData` (a CBOR list of cached hashes). It
  also has `build_dag_from_store(store, root, include_content)`, which rebuilds
  a whole DAG from any object that has
  `retrieve_leaf(root, hash, include_content)`. When content is left out, file
  leaves come back without links. A child that is missing is logged and
  skipped, and a missing root raises.
- `hornetstore.sync_db` provides `SyncDatabase`, which records sync authors,
  sync relays (relay information stored as JSON) and DHT uploadables keyed by
  public key.
- `hornetstore.stats_db` provides `StatsDatabase`, which holds Bitcoin rates,
  pending transactions (including replacement), users with bcrypt-hashed
  passwords, wallet balances, transactions and addresses, login challenges and
  active tokens. Lookups that find nothing raise `RecordNotFound`.
- `hornetstore.stats_store` provides `StatisticsStore`, a `StatsDatabase` that
  also records stored event kinds, user profiles taken from kind 0 events, and
  stored files. It produces the chart data (`AggregatedKindData`,
  `MonthlyKindData`, `ActivityData`, `BarChartData`, `TimeSeriesData`) and
  per-table counts. `save_file` checks the mode in `RelaySettings`: it refuses
  any type listed under photos, videos or audio, raises on an unknown mode, and
  records everything else as a miscellaneous file.
- `hornetstore.negentropy` provides `MessageType`, `encode_message`,
  `decode_message` and `send_message`, which writes one newline-terminated
  JSON array to a binary stream.

## Example

```python
from hornetstore.nostr import Event, Filter
from hornetstore.treestore import TreeStore, commit
from hornetstore.negentropy import MessageType, decode_message, encode_message

event = Event(id="ab" * 32, pubkey="cd" * 32, created_at=1700000000,
              kind=1, tags=[["t", "hello"]], content="hi")
assert Filter(kinds=[1], tags={"t": ["hello"]}).matches(event)

with TreeStore() as store:
    tree = store.load_snapshot().get_tree("content")
    tree.put(b"key", b"value")
    version = commit(tree)
    assert store.load_snapshot(version).get_tree("content").get(b"key") == b"value"

line = encode_message(MessageType.CLOSE)          # '["NEG-CLOSE","N"]'
assert decode_message(line) == (MessageType.CLOSE, [])
```

## What the package does not do

- It has no ready-made relay store that puts events, DAG leaves and blobs into
  buckets inside a `TreeStore`. You can build one from `treestore`, `dag` and
  `nostr`, but the package does not provide it.
- It does not store subscribers and does not allocate Bitcoin addresses to them.
- It only frames negentropy messages. It does not run the reconciliation, open
  network connections or talk to a DHT.
- It has no command-line tool and no server.