"""A versioned store of named key/value trees with atomic multi-tree commits."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Iterator

_DB_NAME = "trees.sqlite"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS commits (version INTEGER PRIMARY KEY);
CREATE TABLE IF NOT EXISTS entries (
    tree TEXT NOT NULL,
    key BLOB NOT NULL,
    version INTEGER NOT NULL,
    value BLOB,
    PRIMARY KEY (tree, key, version)
);
"""


class KeyNotFound(LookupError):
    """Raised when a key is absent from a tree."""

    def __init__(self, key: bytes) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"key not found: {self.key!r}"


def _as_key(key: bytes | bytearray | memoryview | str) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8")
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key)
    raise TypeError(f"key must be bytes or str, not {type(key).__name__}")


class TreeStore:
    """Holds every committed version of every tree, in memory or in a directory."""

    def __init__(self, path: str | Path | None = None) -> None:
        if path is None:
            target = ":memory:"
        else:
            directory = Path(path)
            directory.mkdir(parents=True, exist_ok=True)
            target = str(directory / _DB_NAME)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(target, check_same_thread=False, isolation_level=None)
        self._conn.executescript(_SCHEMA)

    def __enter__(self) -> TreeStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def latest_version(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COALESCE(MAX(version), 0) FROM commits").fetchone()
        return int(row[0])

    def load_snapshot(self, version: int = 0) -> Snapshot:
        """Return a snapshot at version; 0 means the latest committed version."""
        latest = self.latest_version
        if version < 0 or version > latest:
            raise ValueError(f"no such version: {version}")
        return Snapshot(self, version or latest)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _lookup(self, tree: str, key: bytes, version: int) -> bytes | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM entries WHERE tree = ? AND key = ? AND version <= ? "
                "ORDER BY version DESC LIMIT 1",
                (tree, key, version),
            ).fetchone()
        return None if row is None or row[0] is None else bytes(row[0])

    def _scan(self, tree: str, version: int) -> dict[bytes, bytes]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT e.key, e.value FROM entries e WHERE e.tree = ? AND e.version = ("
                "SELECT MAX(version) FROM entries "
                "WHERE tree = e.tree AND key = e.key AND version <= ?)",
                (tree, version),
            ).fetchall()
        return {bytes(key): bytes(value) for key, value in rows if value is not None}

    def _write(self, changes: dict[tuple[str, bytes], bytes | None]) -> int:
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                row = self._conn.execute(
                    "SELECT COALESCE(MAX(version), 0) FROM commits"
                ).fetchone()
                version = int(row[0]) + 1
                self._conn.execute("INSERT INTO commits (version) VALUES (?)", (version,))
                self._conn.executemany(
                    "INSERT INTO entries (tree, key, version, value) VALUES (?, ?, ?, ?)",
                    [(tree, key, version, value) for (tree, key), value in changes.items()],
                )
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
        return version


class Snapshot:
    """A read view of a store at one committed version."""

    def __init__(self, store: TreeStore, version: int) -> None:
        self.store = store
        self.version = version

    def get_tree(self, name: str) -> Tree:
        """Open a tree by name; a tree never written to is simply empty."""
        if not name:
            raise ValueError("tree name must not be empty")
        return Tree(self.store, name, self.version)


class Tree:
    """A named key/value tree; changes stay pending until commit()."""

    def __init__(self, store: TreeStore, name: str, version: int) -> None:
        self.store = store
        self.name = name
        self.version = version
        self._pending: dict[bytes, bytes | None] = {}

    @property
    def dirty(self) -> bool:
        return bool(self._pending)

    def get(self, key: bytes | str) -> bytes:
        """Return the value for key, raising KeyNotFound when absent."""
        k = _as_key(key)
        if k in self._pending:
            value = self._pending[k]
        else:
            value = self.store._lookup(self.name, k, self.version)
        if value is None:
            raise KeyNotFound(k)
        return value

    def __contains__(self, key: object) -> bool:
        try:
            self.get(key)  # type: ignore[arg-type]
        except (KeyNotFound, TypeError):
            return False
        return True

    def put(self, key: bytes | str, value: bytes | bytearray | memoryview) -> None:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"value must be bytes, not {type(value).__name__}")
        self._pending[_as_key(key)] = bytes(value)

    def delete(self, key: bytes | str) -> None:
        """Remove key, raising KeyNotFound when it is not present."""
        k = _as_key(key)
        self.get(k)
        self._pending[k] = None

    def items(self) -> Iterator[tuple[bytes, bytes]]:
        """Yield (key, value) pairs in key order, pending changes included."""
        merged: dict[bytes, bytes | None] = dict(self.store._scan(self.name, self.version))
        merged.update(self._pending)
        for key in sorted(merged):
            value = merged[key]
            if value is not None:
                yield key, value


def commit(*args: Tree | None) -> int:
    """Write the pending changes of all trees as one new version and return it."""
    trees = [tree for tree in args if tree is not None]
    if not trees:
        raise ValueError("nothing to commit")
    store = trees[0].store
    if any(tree.store is not store for tree in trees):
        raise ValueError("trees belong to different stores")
    changes: dict[tuple[str, bytes], bytes | None] = {}
    for tree in trees:
        for key, value in tree._pending.items():
            changes[(tree.name, key)] = value
    version = store._write(changes)
    for tree in trees:
        tree._pending.clear()
        tree.version = version
    return version