"""Scionic merkle tree leaves, their stored form and DAG reassembly from a store."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Protocol

import cbor2

log = logging.getLogger(__name__)


class LeafType(str, Enum):
    """The role a leaf plays in a tree."""

    FILE = "file"
    CHUNK = "chunk"
    DIRECTORY = "directory"


def _optional_bytes(value: Any) -> bytes | None:
    return None if value is None else bytes(value)


@dataclass
class DagLeaf:
    """One leaf of a scionic merkle tree."""

    hash: str
    item_name: str = ""
    type: LeafType = LeafType.FILE
    content_hash: bytes | None = None
    content: bytes | None = None
    leaf_count: int = 0
    parent_hash: str = ""
    links: dict[str, str] = field(default_factory=dict)
    additional_data: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return the leaf as plain data suitable for CBOR or JSON."""
        return {
            "hash": self.hash,
            "item_name": self.item_name,
            "type": self.type.value,
            "content_hash": self.content_hash,
            "content": self.content,
            "leaf_count": self.leaf_count,
            "parent_hash": self.parent_hash,
            "links": dict(self.links),
            "additional_data": dict(self.additional_data),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DagLeaf:
        """Build a leaf from the shape produced by to_dict."""
        return cls(
            hash=str(data["hash"]),
            item_name=str(data.get("item_name") or ""),
            type=LeafType(data.get("type") or LeafType.FILE.value),
            content_hash=_optional_bytes(data.get("content_hash")),
            content=_optional_bytes(data.get("content")),
            leaf_count=int(data.get("leaf_count") or 0),
            parent_hash=str(data.get("parent_hash") or ""),
            links={str(k): str(v) for k, v in (data.get("links") or {}).items()},
            additional_data={
                str(k): str(v) for k, v in (data.get("additional_data") or {}).items()
            },
        )


def _decode_mapping(data: bytes, what: str) -> Mapping[str, Any]:
    decoded = cbor2.loads(data)
    if not isinstance(decoded, Mapping):
        raise ValueError(f"{what} must decode to a map")
    return decoded


@dataclass
class DagLeafData:
    """A leaf together with the publisher's key and signature of its tree."""

    leaf: DagLeaf
    public_key: str = ""
    signature: str = ""

    def to_bytes(self) -> bytes:
        """Serialise to CBOR."""
        return cbor2.dumps(
            {
                "public_key": self.public_key,
                "signature": self.signature,
                "leaf": self.leaf.to_dict(),
            }
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> DagLeafData:
        """Parse the CBOR produced by to_bytes."""
        decoded = _decode_mapping(data, "leaf data")
        leaf = decoded.get("leaf")
        if not isinstance(leaf, Mapping):
            raise ValueError("leaf data has no leaf")
        return cls(
            leaf=DagLeaf.from_dict(leaf),
            public_key=str(decoded.get("public_key") or ""),
            signature=str(decoded.get("signature") or ""),
        )


@dataclass
class Dag:
    """A whole tree: its root hash and every leaf keyed by hash."""

    root: str
    leafs: dict[str, DagLeaf] = field(default_factory=dict)


@dataclass
class DagData:
    """A tree with the publisher's key and signature."""

    dag: Dag
    public_key: str = ""
    signature: str = ""


@dataclass
class CacheData:
    """A list of hashes cached under one bucket key."""

    keys: list[str] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        """Serialise to CBOR."""
        return cbor2.dumps({"keys": list(self.keys)})

    @classmethod
    def from_bytes(cls, data: bytes) -> CacheData:
        """Parse the CBOR produced by to_bytes."""
        decoded = _decode_mapping(data, "cache data")
        return cls(keys=[str(key) for key in decoded.get("keys") or []])


class LeafSource(Protocol):
    def retrieve_leaf(self, root: str, hash: str, include_content: bool) -> DagLeafData: ...


def build_dag_from_store(store: LeafSource, root: str, include_content: bool) -> DagData:
    """Reassemble the tree under root from the leaves a store holds.

    A missing root raises whatever the store raised; a missing descendant is
    logged and left out. Without content, file leaves are kept without links.
    """
    leafs: dict[str, DagLeaf] = {}
    root_data: DagLeafData | None = None

    def add(hash_: str) -> None:
        nonlocal root_data
        data = store.retrieve_leaf(root, hash_, include_content)
        leaf = data.leaf
        if leaf.hash == root:
            root_data = data
        if not include_content and leaf.type is LeafType.FILE:
            leafs[leaf.hash] = dataclasses.replace(leaf, links={})
            return
        leafs[leaf.hash] = leaf
        for child in leaf.links.values():
            try:
                add(child)
            except Exception as exc:  # a broken branch does not spoil the tree
                log.warning("Error adding child leaf %s: %s", child, exc)

    try:
        add(root)
    except Exception as exc:
        log.warning("Failed to add leaves from store: %s", exc)
        raise

    if root_data is None:
        raise ValueError(f"root leaf {root!r} not found in store")

    return DagData(
        dag=Dag(root=root, leafs=leafs),
        public_key=root_data.public_key,
        signature=root_data.signature,
    )