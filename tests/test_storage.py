import threading

import numpy
import pytest

from geotree import RTreeIndex
from geotree.core.locking import ReadWriteLock
from geotree.core.node import Entry, Node
from geotree.core.storage import MemoryStore, NodeStore
from geotree.envelope import Envelope
from geotree.errors import ConcurrentModification, CorruptNode


def leaf(*payloads):
    return Node(True, [Entry.leaf(Envelope.point(i, i), p, seq=i)
                       for i, p in enumerate(payloads)])


def test_memory_store_allocates_references():
    store = MemoryStore()
    assert isinstance(store, NodeStore)
    first = store.write_node(None, leaf("a"))
    second = store.write_node(None, leaf("b"))
    assert first != second
    assert len(store) == 2
    assert first in store
    assert sorted(store.refs()) == sorted([first, second])
    assert store.read_node(first).ref == first
    assert store.read_node(second).entries[0].payload == "b"


def test_memory_store_copies_nodes():
    store = MemoryStore()
    node = leaf("a")
    ref = store.write_node(None, node)
    node.entries.append(Entry.leaf(Envelope.point(5, 5), "b"))
    assert len(store.read_node(ref)) == 1
    read = store.read_node(ref)
    read.entries.clear()
    assert len(store.read_node(ref)) == 1
    store.write_node(ref, read)
    assert len(store.read_node(ref)) == 0


def test_memory_store_free_and_stats():
    store = MemoryStore()
    ref = store.write_node(None, leaf("a"))
    store.read_node(ref)
    version = store.version
    store.free_node(ref)
    assert store.version == version + 1
    assert ref not in store
    with pytest.raises(CorruptNode):
        store.read_node(ref)
    with pytest.raises(CorruptNode):
        store.free_node(ref)
    assert store.stats == {"reads": 1, "writes": 1, "frees": 1}


def test_memory_store_metadata():
    store = MemoryStore()
    assert store.load_root_ref() is None
    assert store.load_height() == 0
    store.store_root_ref(7)
    store.store_height(3)
    assert store.load_root_ref() == 7
    assert store.load_height() == 3


def test_node_helpers():
    node = Node(False, [Entry.internal(Envelope(0, 0, 1, 1), 4),
                        Entry.internal(Envelope(2, 2, 3, 3), 9)])
    assert node.is_root
    assert node.envelope() == Envelope(0, 0, 3, 3)
    assert node.position(9) == 1
    node.update_child(9, Envelope(2, 2, 5, 5))
    assert node.envelope() == Envelope(0, 0, 5, 5)
    with pytest.raises(KeyError):
        node.position(5)
    assert Node(True).envelope() is None
    assert not node.entries[0].isleaf
    assert leaf("a").entries[0].matches(Envelope.point(0, 0), "a")


def test_readers_share_the_lock():
    lock = ReadWriteLock()
    barrier = threading.Barrier(3, timeout=5)
    errors = []

    def reader():
        with lock.read():
            try:
                barrier.wait()
            except threading.BrokenBarrierError as exc:
                errors.append(exc)

    threads = [threading.Thread(target=reader) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert errors == []


def test_writer_excludes_readers():
    lock = ReadWriteLock()
    events = []
    writing = threading.Event()

    def reader():
        writing.wait(5)
        with lock.read():
            events.append("read")

    thread = threading.Thread(target=reader)
    with lock.write():
        thread.start()
        writing.set()
        thread.join(0.2)
        events.append("write")
    thread.join(5)
    assert events == ["write", "read"]


def test_concurrent_readers_and_writer():
    rng = numpy.random.default_rng(4)
    points = rng.uniform(0, 100, size=(300, 2))
    index = RTreeIndex(max_fanout=6)
    for i, (x, y) in enumerate(points[:200]):
        index.insert((x, y), i)
    window = (0, 0, 50, 50)
    before = {e.payload for e in index.search(window)}
    after = before | {i for i, (x, y) in enumerate(points)
                      if i >= 200 and x <= 50 and y <= 50}
    failures = []

    def query():
        for _ in range(50):
            try:
                payloads = {e.payload for e in index.search(window)}
            except ConcurrentModification:
                continue
            if not before <= payloads <= after:
                failures.append(payloads)

    def write():
        for i, (x, y) in enumerate(points[200:], 200):
            index.insert((x, y), i)

    threads = [threading.Thread(target=query) for _ in range(4)]
    threads.append(threading.Thread(target=write))
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert failures == []
    assert len(index) == 300
    assert {e.payload for e in index.search(window)} == after
    assert index.validate()
