import cbor2
import pytest

from hornetstore.dag import (
    CacheData,
    DagLeaf,
    DagLeafData,
    LeafType,
    build_dag_from_store,
)
from hornetstore.treestore import KeyNotFound


class _FakeStore:
    def __init__(self, leaves, public_key="pk", signature="sig"):
        self.leaves = {leaf.hash: leaf for leaf in leaves}
        self.public_key = public_key
        self.signature = signature
        self.calls = []

    def retrieve_leaf(self, root, hash, include_content):
        self.calls.append((root, hash, include_content))
        if hash not in self.leaves:
            raise KeyNotFound(hash.encode())
        return DagLeafData(
            leaf=self.leaves[hash], public_key=self.public_key, signature=self.signature
        )


def _tree():
    chunk_a = DagLeaf(hash="a", type=LeafType.CHUNK, content=b"aa", content_hash=b"ha")
    chunk_b = DagLeaf(hash="b", type=LeafType.CHUNK, content=b"bb", content_hash=b"hb")
    file_leaf = DagLeaf(
        hash="f", item_name="doc.txt", type=LeafType.FILE, links={"0": "a", "1": "b"}
    )
    root = DagLeaf(hash="r", item_name="dir", type=LeafType.DIRECTORY, links={"0": "f"})
    return [root, file_leaf, chunk_a, chunk_b]


def test_leaf_type_values():
    assert LeafType("file") is LeafType.FILE
    assert LeafType("directory") is LeafType.DIRECTORY
    assert LeafType("chunk") is LeafType.CHUNK


def test_leaf_dict_round_trip():
    leaf = DagLeaf(
        hash="h",
        item_name="pic.png",
        type=LeafType.FILE,
        content_hash=b"\x01\x02",
        content=b"data",
        leaf_count=3,
        parent_hash="p",
        links={"0": "c"},
        additional_data={"f": "/app/x"},
    )
    assert DagLeaf.from_dict(leaf.to_dict()) == leaf


def test_leaf_from_dict_rejects_unknown_type():
    with pytest.raises(ValueError):
        DagLeaf.from_dict({"hash": "h", "type": "bogus"})


def test_leaf_data_bytes_round_trip():
    data = DagLeafData(
        leaf=DagLeaf(hash="h", content_hash=b"x", links={"0": "c"}),
        public_key="pk",
        signature="sig",
    )
    assert DagLeafData.from_bytes(data.to_bytes()) == data


def test_leaf_data_from_bytes_rejects_non_map():
    with pytest.raises(ValueError):
        DagLeafData.from_bytes(cbor2.dumps([1, 2, 3]))


def test_cache_data_round_trip():
    cache = CacheData(keys=["one", "two"])
    assert CacheData.from_bytes(cache.to_bytes()).keys == ["one", "two"]


def test_cache_data_empty_map_gives_no_keys():
    assert CacheData.from_bytes(cbor2.dumps({})).keys == []


def test_build_with_content_includes_all_leaves():
    store = _FakeStore(_tree())
    data = build_dag_from_store(store, "r", True)
    assert set(data.dag.leafs) == {"r", "f", "a", "b"}
    assert data.dag.root == "r"
    assert data.public_key == "pk"
    assert data.signature == "sig"
    assert data.dag.leafs["f"].links == {"0": "a", "1": "b"}


def test_build_without_content_stops_at_file_leaves():
    store = _FakeStore(_tree())
    data = build_dag_from_store(store, "r", False)
    assert set(data.dag.leafs) == {"r", "f"}
    assert data.dag.leafs["f"].links == {}
    assert store.leaves["f"].links == {"0": "a", "1": "b"}
    assert all(call[2] is False for call in store.calls)


def test_missing_child_is_skipped():
    leaves = [leaf for leaf in _tree() if leaf.hash != "b"]
    data = build_dag_from_store(_FakeStore(leaves), "r", True)
    assert set(data.dag.leafs) == {"r", "f", "a"}


def test_missing_root_raises_store_error():
    with pytest.raises(KeyNotFound):
        build_dag_from_store(_FakeStore(_tree()), "missing", True)