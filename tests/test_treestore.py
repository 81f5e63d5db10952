import pytest

from hornetstore.treestore import KeyNotFound, TreeStore, commit


@pytest.fixture
def store():
    with TreeStore() as s:
        yield s


def test_missing_key_raises(store):
    tree = store.load_snapshot(0).get_tree("content")
    with pytest.raises(KeyNotFound):
        tree.get(b"missing")


def test_pending_put_visible_in_same_tree(store):
    tree = store.load_snapshot(0).get_tree("content")
    tree.put(b"k", b"value")
    assert tree.get(b"k") == b"value"
    assert tree.dirty


def test_uncommitted_not_visible_elsewhere(store):
    tree = store.load_snapshot(0).get_tree("content")
    tree.put(b"k", b"value")
    other = store.load_snapshot(0).get_tree("content")
    assert b"k" not in other


def test_commit_makes_visible(store):
    tree = store.load_snapshot(0).get_tree("content")
    tree.put("k", b"value")
    version = commit(tree)
    assert store.latest_version == version
    assert store.load_snapshot(0).get_tree("content").get("k") == b"value"
    assert not tree.dirty


def test_old_snapshot_keeps_old_value(store):
    tree = store.load_snapshot(0).get_tree("t")
    tree.put(b"k", b"first")
    first = commit(tree)
    tree.put(b"k", b"second")
    second = commit(tree)
    assert second > first
    assert store.load_snapshot(first).get_tree("t").get(b"k") == b"first"
    assert store.load_snapshot(0).get_tree("t").get(b"k") == b"second"


def test_delete(store):
    tree = store.load_snapshot(0).get_tree("t")
    tree.put(b"k", b"v")
    commit(tree)
    tree.delete(b"k")
    commit(tree)
    with pytest.raises(KeyNotFound):
        store.load_snapshot(0).get_tree("t").get(b"k")


def test_delete_missing_raises(store):
    tree = store.load_snapshot(0).get_tree("t")
    with pytest.raises(KeyNotFound):
        tree.delete(b"nothing")


def test_items_sorted_and_merged(store):
    tree = store.load_snapshot(0).get_tree("t")
    tree.put(b"b", b"2")
    tree.put(b"a", b"1")
    commit(tree)
    tree.put(b"c", b"3")
    tree.delete(b"a")
    assert list(tree.items()) == [(b"b", b"2"), (b"c", b"3")]


def test_commit_multiple_trees_atomically(store):
    snapshot = store.load_snapshot(0)
    one = snapshot.get_tree("one")
    two = snapshot.get_tree("two")
    one.put(b"x", b"from-one")
    two.put(b"x", b"from-two")
    version = commit(one, None, two)
    later = store.load_snapshot(version)
    assert later.get_tree("one").get(b"x") == b"from-one"
    assert later.get_tree("two").get(b"x") == b"from-two"


def test_trees_are_independent(store):
    tree = store.load_snapshot(0).get_tree("one")
    tree.put(b"x", b"v")
    commit(tree)
    assert list(store.load_snapshot(0).get_tree("two").items()) == []


def test_commit_nothing_raises():
    with pytest.raises(ValueError):
        commit()


def test_commit_across_stores_raises(store):
    with TreeStore() as other:
        a = store.load_snapshot(0).get_tree("t")
        b = other.load_snapshot(0).get_tree("t")
        with pytest.raises(ValueError):
            commit(a, b)


def test_future_snapshot_raises(store):
    with pytest.raises(ValueError):
        store.load_snapshot(store.latest_version + 1)


def test_empty_tree_name_raises(store):
    with pytest.raises(ValueError):
        store.load_snapshot(0).get_tree("")


def test_put_rejects_non_bytes_value(store):
    tree = store.load_snapshot(0).get_tree("t")
    with pytest.raises(TypeError):
        tree.put(b"k", "text")


def test_disk_persistence(tmp_path):
    with TreeStore(tmp_path / "db") as first:
        tree = first.load_snapshot(0).get_tree("content")
        tree.put(b"\x00\x01", b"payload")
        version = commit(tree)
    with TreeStore(tmp_path / "db") as second:
        assert second.latest_version == version
        assert second.load_snapshot(0).get_tree("content").get(b"\x00\x01") == b"payload"