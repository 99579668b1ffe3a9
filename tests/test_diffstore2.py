import math
from dataclasses import dataclass

import pytest

from svcproxy.diffstore2 import (
    BufferLeaf,
    Store,
    new_any_store,
    new_buffer_store,
    new_json_store,
)
from svcproxy.xxhash64 import xxh64


def test_any_leaf_store():
    store = new_any_store(lambda a, b: a == b)
    out = []

    store.get("a").set("a1")
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.get("a").set("a1")
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.get("a").set("a2")
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.done()
    out.append(store.format_diff())

    assert "".join(out) == (
        "-----\n"
        'C a => "{a1}"\n'
        "-----\n"
        "<same>\n"
        "-----\n"
        'U a => "{a2}"\n'
        "-----\n"
        "D a\n"
    )


def test_any_leaf_store_file_like():
    store = new_any_store(lambda a, b: a == b)
    out = []

    store.get(1).set("line1")
    store.get(2).set("line2")
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.get(1).set("line2.1")
    store.get(2).set("line2.2")
    store.done()
    out.append(store.format_diff())

    assert "".join(out) == (
        "-----\n"
        'C 1 => "{line1}"\n'
        'C 2 => "{line2}"\n'
        "-----\n"
        'U 1 => "{line2.1}"\n'
        'U 2 => "{line2.2}"\n'
    )


def test_buffer_leaf_formatting():
    leaf = BufferLeaf()
    leaf.write(f"hello {1} {math.pi:.2f}")
    assert f"[ {leaf} ]" == "[ hello 1 3.14 ]"


def test_buffer_leaf_hash_follows_content():
    leaf = BufferLeaf()
    leaf.write("abc")
    leaf.writeln()
    assert leaf.getvalue() == "abc\n"
    assert len(leaf) == 4
    assert leaf.hash() == xxh64(b"abc\n")
    leaf.reset()
    assert leaf.getvalue() == ""
    assert leaf.hash() == xxh64(b"")


def test_buffer_store_example():
    store = new_buffer_store()
    out = []

    store.get("a").write("hello a")
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.get("a").write("hello a")
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.get("a").write("hello a")
    store.get("b").write("hello b")
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.get("a").write("hi a")
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.get("b").write("hi b")
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.done()
    out.append(store.format_diff())

    assert "".join(out) == (
        "-----\n"
        'C a => "hello a"\n'
        "-----\n"
        "<same>\n"
        "-----\n"
        'C b => "hello b"\n'
        "-----\n"
        'U a => "hi a"\n'
        "D b\n"
        "-----\n"
        'C b => "hi b"\n'
        "D a\n"
        "-----\n"
        "D b\n"
    )


def test_store_cleanup():
    store = Store(BufferLeaf)

    store.get("a").write("hello")
    store.done()

    store.reset()
    store.done()
    assert "a" in store

    store.reset()
    store.done()
    store.reset()
    assert "a" not in store
    assert len(store) == 0


@dataclass
class _MyT:
    V: str


def test_json_leaf_store():
    store = new_json_store()
    out = []

    store.get("a").set(_MyT("a1"))
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.get("a").set(_MyT("a1"))
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.get("a").set(_MyT("a2"))
    store.done()
    out.append(store.format_diff())

    store.reset()
    store.done()
    out.append(store.format_diff())

    assert "".join(out) == (
        "-----\n"
        'C a => "{\\"V\\":\\"a1\\"}"\n'
        "-----\n"
        "<same>\n"
        "-----\n"
        'U a => "{\\"V\\":\\"a2\\"}"\n'
        "-----\n"
        "D a\n"
    )


def test_diff_queries_require_done():
    store = new_buffer_store()
    store.get("a").write("x")
    with pytest.raises(RuntimeError):
        store.changed()
    with pytest.raises(RuntimeError):
        store.deleted()
    with pytest.raises(RuntimeError):
        store.has_changes()


def test_has_changes_and_list():
    store = new_buffer_store()
    store.get("b").write("1")
    store.get("a").write("2")
    store.done()
    assert store.has_changes()
    assert [item.key for item in store.list()] == ["a", "b"]

    store.reset()
    store.get("a").write("2")
    store.get("b").write("1")
    store.done()
    assert not store.has_changes()


def test_deferred_actions_run_once():
    store = new_buffer_store()
    item = store.get_item("m")
    item.value.write("{ ")
    item.defer(lambda leaf: leaf.write("}"))
    store.run_deferred()
    store.run_deferred()
    assert item.value.getvalue() == "{ }"


def test_item_states():
    store = new_buffer_store()
    item = store.get_item("k")
    item.value.write("v")
    store.done()
    assert item.created() and item.changed() and not item.deleted()

    store.reset()
    store.done()
    assert item.deleted() and not item.changed()