"""
R-tree index over bounding boxes.

:class:`RTreeIndex` keeps a height-balanced tree of nodes in a node store.
Leaf entries reference caller payloads (and optionally a geometry reference);
internal entries reference child nodes. Every entry carries the envelope of
what it references, so queries can prune whole subtrees.

Mutations (insert, delete, bulk loading) hold the index write lock for their
whole duration. Queries are lazy: they only take the read lock while reading
a node, and fail with :class:`~geotree.errors.ConcurrentModification` if the
index was mutated between two pulls.
"""
import heapq
import itertools
import logging
import threading

from . import build
from .config import make_config
from .core.locking import ReadWriteLock
from .core.node import Entry, Node
from .core.storage import MemoryStore
from .envelope import Envelope, Envelopes
from .errors import (ConcurrentModification, CorruptNode, EntryNotFound,
                     InvalidBoundingBox)
from .split import split

logger = logging.getLogger(__name__)

# Heap item kinds for the nearest neighbours search. At equal distance, nodes
# are expanded before entries are emitted.
_NODE = 0
_ENTRY = 1


class RTreeIndex():
    """
    Dynamic R-tree.

    Args:
        store (NodeStore, optional): where nodes live. Defaults to a new
            :class:`~geotree.core.storage.MemoryStore`. A store already
            holding a tree is resumed.
        **kwargs: configuration, see :func:`geotree.config.make_config`.

    Attributes:
        config (Config): fanout bounds, split strategy and read checks.
        store (NodeStore): the node store.
        stats (dict): structural counters.
    """
    def __init__(self, store=None, **kwargs):
        self.config = make_config(**kwargs)
        self.store = MemoryStore() if store is None else store
        self._lock = ReadWriteLock()
        self._stats_lock = threading.Lock()
        self._version = 0
        self.stats = {
            "splits": 0,
            "condensed": 0,
            "reinserted": 0,
            "nodes_visited": 0,
        }
        self._size, last_seq = self._scan()
        self._seq = itertools.count(last_seq + 1)

    def _scan(self):
        """Size and last sequence number of an existing tree."""
        root_ref = self.store.load_root_ref()
        if root_ref is None:
            return 0, -1
        size, last_seq = 0, -1
        stack = [root_ref]
        while stack:
            node = self._node(stack.pop())
            if node.isleaf:
                size += len(node.entries)
                last_seq = max([last_seq] + [e.seq for e in node.entries])
            else:
                stack.extend(e.child for e in node.entries)
        return size, last_seq

    def __repr__(self):
        return "<{} size={} height={} fanout=[{}, {}] split={}>".format(
            self.__class__.__name__, len(self), self.height,
            self.config.min_fanout, self.config.max_fanout,
            self.config.split)

    def __len__(self):
        """Number of leaf entries."""
        return self._size

    def __iter__(self):
        return self.entries()

    @property
    def height(self):
        """Number of levels, 0 for an empty tree."""
        return self.store.load_height()

    @property
    def is_empty(self):
        return self.store.load_root_ref() is None

    @property
    def envelope(self):
        """Envelope of the whole index, None when empty."""
        with self._lock.read():
            root_ref = self.store.load_root_ref()
            if root_ref is None:
                return None
            return self._node(root_ref).envelope()

    # ------------------------------------------------------------------
    # Store access. These helpers take no lock: callers hold it.

    def _node(self, ref):
        return self.store.read_node(ref)

    def _write(self, node):
        node.ref = self.store.write_node(node.ref, node)
        return node.ref

    def _reparent(self, entries, parent_ref):
        for entry in entries:
            child = self._node(entry.child)
            child.parent = parent_ref
            self._write(child)

    def _check_dims(self, envelope):
        root_ref = self.store.load_root_ref()
        if root_ref is not None:
            self._node(root_ref).envelope().check_dims(envelope)

    # ------------------------------------------------------------------
    # Insertion

    def insert(self, envelope, payload, geometry=None):
        """
        Inserts `payload` under the box `envelope`.

        Payloads are not deduplicated: inserting twice the same pair stores
        two entries.

        Args:
            envelope: an Envelope or anything :meth:`Envelope.coerce` accepts.
            payload: opaque, hashable identifier of the indexed object.
            geometry: optional opaque reference to the full geometry.

        Raises:
            InvalidBoundingBox: the box is malformed or of wrong dimension.
                The index is left unchanged.
        """
        envelope = Envelope.coerce(envelope)
        with self._lock.write():
            self._check_dims(envelope)
            self._insert(Entry.leaf(envelope, payload, geometry,
                                    next(self._seq)))
            self._size += 1
            self._version += 1

    def _insert(self, entry):
        root_ref = self.store.load_root_ref()
        if root_ref is None:
            root_ref = self._write(Node(True, [entry]))
            self.store.store_root_ref(root_ref)
            self.store.store_height(1)
            return
        node = self._choose_leaf(root_ref, entry.envelope)
        node.entries.append(entry)
        self._adjust_tree(node)

    def _choose_leaf(self, root_ref, envelope):
        node = self._node(root_ref)
        while not node.isleaf:
            node = self._node(self._choose_subtree(node, envelope))
        return node

    def _choose_subtree(self, node, envelope):
        """
        Child needing the least area enlargement to include `envelope`, then
        the one with the smallest resulting area, then the one with the
        fewest entries. Remaining ties go to the first child.
        """
        envs = _stack(node)
        keys = list(zip(envs.enlargements(envelope).tolist(),
                        envs.union_areas(envelope).tolist()))
        best = min(keys)
        ties = [i for i, key in enumerate(keys) if key == best]
        if len(ties) > 1:
            ties.sort(key=lambda i: (len(self._node(node.entries[i].child)),
                                     i))
        return node.entries[ties[0]].child

    def _adjust_tree(self, node):
        """
        Writes the modified `node` and walks up to the root, splitting
        overflowing nodes and refreshing every ancestor's envelope.
        """
        while True:
            sibling = None
            if len(node.entries) > self.config.max_fanout:
                sibling = self._split(node)
            if node.is_root:
                if sibling is None:
                    self._write(node)
                else:
                    self._grow_root(node, sibling)
                return
            self._write(node)
            parent = self._node(node.parent)
            parent.update_child(node.ref, node.envelope())
            if sibling is not None:
                parent.entries.append(
                    Entry.internal(sibling.envelope(), sibling.ref))
            node = parent

    def _split(self, node):
        group_a, group_b = split(node.entries, self.config.min_fanout,
                                 self.config.split)
        node.entries = group_a
        sibling = Node(node.isleaf, group_b, parent=node.parent)
        self._write(sibling)
        if not node.isleaf:
            self._reparent(group_b, sibling.ref)
        self.stats["splits"] += 1
        return sibling

    def _grow_root(self, node, sibling):
        root = Node(False, [Entry.internal(node.envelope(), node.ref),
                            Entry.internal(sibling.envelope(), sibling.ref)])
        root_ref = self._write(root)
        node.parent = sibling.parent = root_ref
        self._write(node)
        self._write(sibling)
        height = self.height + 1
        self.store.store_root_ref(root_ref)
        self.store.store_height(height)
        logger.debug("Root split, height is now %d", height)

    # ------------------------------------------------------------------
    # Deletion

    def delete(self, envelope, payload, missing_ok=True):
        """
        Removes one entry matching both `envelope` and `payload`.

        Nodes left under the minimum fanout are dissolved and their entries
        reinserted from the root.

        Returns:
            bool: True if an entry was removed, False if none matched.

        Raises:
            EntryNotFound: if no entry matched and `missing_ok` is False.
        """
        envelope = Envelope.coerce(envelope)
        with self._lock.write():
            self._check_dims(envelope)
            found = self._find_leaf(envelope, payload)
            if found is None:
                if missing_ok:
                    return False
                raise EntryNotFound((envelope, payload))
            leaf, pos = found
            del leaf.entries[pos]
            self._size -= 1
            self._condense(leaf)
            self._version += 1
        return True

    def _find_leaf(self, envelope, payload):
        # Overlapping siblings may both contain the box: explore all of them
        # depth-first, in entry order.
        root_ref = self.store.load_root_ref()
        if root_ref is None:
            return None
        stack = [root_ref]
        while stack:
            node = self._node(stack.pop())
            if node.isleaf:
                for i, entry in enumerate(node.entries):
                    if entry.matches(envelope, payload):
                        return node, i
            else:
                hits = _stack(node).contains(envelope).tolist()
                stack.extend(e.child for e, hit
                             in zip(reversed(node.entries), reversed(hits))
                             if hit)
        return None

    def _condense(self, node):
        orphans = []
        while not node.is_root:
            parent = self._node(node.parent)
            if len(node.entries) < self.config.min_fanout:
                del parent.entries[parent.position(node.ref)]
                orphans.extend(self._dissolve(node))
                self.stats["condensed"] += 1
            else:
                self._write(node)
                parent.update_child(node.ref, node.envelope())
            node = parent
        self._shrink_root(node)
        if orphans:
            logger.debug("Reinserting %d orphaned entries", len(orphans))
            self.stats["reinserted"] += len(orphans)
            for entry in sorted(orphans, key=lambda e: e.seq):
                self._insert(entry)

    def _dissolve(self, node):
        """Frees the subtree rooted at `node`, returns its leaf entries."""
        entries = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current.isleaf:
                entries.extend(current.entries)
            else:
                stack.extend(self._node(e.child) for e in current.entries)
            self.store.free_node(current.ref)
        return entries

    def _shrink_root(self, root):
        height = self.height
        while not root.isleaf and len(root.entries) == 1:
            child = self._node(root.entries[0].child)
            self.store.free_node(root.ref)
            child.parent = None
            root = child
            height -= 1
            logger.debug("Root collapsed, height is now %d", height)
        if root.entries:
            self.store.store_root_ref(self._write(root))
            self.store.store_height(height)
        else:
            self.store.free_node(root.ref)
            self.store.store_root_ref(None)
            self.store.store_height(0)

    def clear(self):
        """Releases every node; the index becomes empty."""
        with self._lock.write():
            root_ref = self.store.load_root_ref()
            if root_ref is not None:
                self._dissolve(self._node(root_ref))
            self.store.store_root_ref(None)
            self.store.store_height(0)
            self._size = 0
            self._version += 1

    # ------------------------------------------------------------------
    # Bulk loading

    @classmethod
    def bulk_load(cls, items, order="str", store=None, **kwargs):
        """
        Builds an index from all its items at once.

        Args:
            items: iterable of ``(envelope, payload)`` or
                ``(envelope, payload, geometry)`` tuples.
            order (str): space-filling order, one of
                :data:`geotree.build.ORDERS`.
            store (NodeStore, optional): an empty store.
            **kwargs: configuration, see :func:`geotree.config.make_config`.
        """
        index = cls(store=store, **kwargs)
        index.load(items, order=order)
        return index

    def load(self, items, order="str"):
        """Packs `items` into this empty index, see :meth:`bulk_load`."""
        boxes = list(_coerce_items(items))
        if boxes:
            first = boxes[0][0]
            for envelope, _, _ in boxes:
                first.check_dims(envelope)
        with self._lock.write():
            if self.store.load_root_ref() is not None:
                raise NotImplementedError("Bulk loading into a non-empty "
                                          "index is not implemented")
            if not boxes:
                return
            entries = [Entry.leaf(env, payload, geom, next(self._seq))
                       for env, payload, geom in boxes]
            level, depth = build.build_levels(
                entries, self.config.max_fanout, self._make_node, order)
            root_ref = self._write(Node(depth == 0, level))
            if depth:
                self._reparent(level, root_ref)
            self.store.store_root_ref(root_ref)
            self.store.store_height(depth + 1)
            self._size = len(entries)
            self._version += 1
        logger.debug("Bulk loaded %d entries, height %d", len(entries),
                     depth + 1)

    def _make_node(self, isleaf, entries):
        node = Node(isleaf, entries)
        ref = self._write(node)
        if not isleaf:
            self._reparent(entries, ref)
        return Entry.internal(node.envelope(), ref)

    # ------------------------------------------------------------------
    # Queries

    def _snapshot(self):
        with self._lock.read():
            return self._version, self.store.load_root_ref()

    def _read(self, ref, version, expected=None):
        with self._lock.read():
            if self._version != version:
                raise ConcurrentModification(
                    "Index was modified during iteration")
            node = self.store.read_node(ref)
        with self._stats_lock:
            self.stats["nodes_visited"] += 1
        if self.config.verify_reads:
            self._verify(node, expected)
        return node

    def _verify(self, node, expected):
        if len(node.entries) > self.config.max_fanout:
            raise CorruptNode("Node {} holds {} entries, maximum is {}"
                              .format(node.ref, len(node.entries),
                                      self.config.max_fanout))
        if expected is not None and node.envelope() != expected:
            raise CorruptNode("Node {} envelope {} differs from {} declared "
                              "by its parent"
                              .format(node.ref, node.envelope(), expected))

    def search(self, window=None):
        """
        Leaf entries whose envelope intersects `window`.

        Boundaries are inclusive. A `window` of None matches everything.

        Returns:
            A lazy iterator of :class:`~geotree.core.node.Entry`. Each call
            starts a fresh traversal from the root.
        """
        if window is not None:
            window = Envelope.coerce(window)
        return self._search(window)

    def entries(self):
        """All leaf entries."""
        return self._search(None)

    def _search(self, window):
        version, root_ref = self._snapshot()
        if root_ref is None:
            return
        stack = [(root_ref, None)]
        while stack:
            ref, expected = stack.pop()
            node = self._read(ref, version, expected)
            if window is None:
                hits = [True] * len(node.entries)
            else:
                if expected is None:
                    window.check_dims(node.envelope())
                hits = _stack(node).intersects(window).tolist()
            if node.isleaf:
                yield from (e for e, hit in zip(node.entries, hits) if hit)
            else:
                stack.extend((e.child, e.envelope) for e, hit
                             in zip(reversed(node.entries), reversed(hits))
                             if hit)

    def nearest(self, point, k=None, max_distance=None):
        """
        Leaf entries by increasing distance of their envelope to `point`.

        Best-first branch-and-bound traversal: nodes are expanded in order of
        their minimum possible distance, so a subtree is never read once `k`
        closer entries have been emitted. Equidistant entries come out in
        insertion order.

        Args:
            point: a point or box, anything :meth:`Envelope.coerce` accepts.
            k (int, optional): maximum number of entries. None for all.
            max_distance (float, optional): inclusive distance bound.

        Returns:
            A lazy iterator of ``(entry, distance)`` pairs.
        """
        point = Envelope.coerce(point)
        if k is not None and k < 0:
            raise ValueError("k must be non-negative, got {}".format(k))
        return self._nearest(point, k, max_distance)

    def _nearest(self, point, k, max_distance):
        version, root_ref = self._snapshot()
        if root_ref is None or k == 0:
            return
        tiebreak = itertools.count()
        # (distance, kind, order, unique, node ref or entry, declared env)
        heap = [(0., _NODE, 0, next(tiebreak), root_ref, None)]
        found = 0
        checked = False
        while heap:
            dist, kind, _, _, item, expected = heapq.heappop(heap)
            if max_distance is not None and dist > max_distance:
                return
            if kind == _ENTRY:
                yield item, dist
                found += 1
                if k is not None and found >= k:
                    return
                continue
            node = self._read(item, version, expected)
            if not checked:
                point.check_dims(node.envelope())
                checked = True
            dists = _stack(node).mindist(point).tolist()
            for entry, d in zip(node.entries, dists):
                if node.isleaf:
                    heapq.heappush(heap, (d, _ENTRY, entry.seq,
                                          next(tiebreak), entry, None))
                else:
                    order = next(tiebreak)
                    heapq.heappush(heap, (d, _NODE, order, order,
                                          entry.child, entry.envelope))

    # ------------------------------------------------------------------
    # Checks

    def validate(self):
        """
        Checks the structural invariants of the whole tree.

        Envelopes declared by parents equal the union of the children's
        entries, fanouts are within bounds (the root may hold fewer than the
        minimum), every leaf sits at depth `height`, and parent references
        are consistent.

        Raises:
            CorruptNode: on the first violated invariant.
        """
        with self._lock.read():
            root_ref = self.store.load_root_ref()
            height = self.store.load_height()
            if root_ref is None:
                if height != 0 or self._size != 0:
                    raise CorruptNode("Empty tree with height {} and size {}"
                                      .format(height, self._size))
                return True
            count = 0
            stack = [(root_ref, None, None, 1)]
            while stack:
                ref, parent, expected, depth = stack.pop()
                node = self._node(ref)
                if node.parent != parent:
                    raise CorruptNode("Node {} has parent {}, expected {}"
                                      .format(ref, node.parent, parent))
                size = len(node.entries)
                if size > self.config.max_fanout or size == 0:
                    raise CorruptNode("Node {} holds {} entries"
                                      .format(ref, size))
                if parent is not None and size < self.config.min_fanout:
                    raise CorruptNode("Node {} underflows with {} entries"
                                      .format(ref, size))
                self._verify(node, expected)
                if node.isleaf:
                    if depth != height:
                        raise CorruptNode("Leaf {} at depth {}, height is {}"
                                          .format(ref, depth, height))
                    count += size
                elif depth >= height:
                    raise CorruptNode("Internal node {} at depth {}"
                                      .format(ref, depth))
                else:
                    stack.extend((e.child, ref, e.envelope, depth + 1)
                                 for e in node.entries)
            if count != self._size:
                raise CorruptNode("Tree holds {} entries, expected {}"
                                  .format(count, self._size))
        return True


def _coerce_items(items):
    for item in items:
        try:
            envelope, payload, *rest = item
        except (TypeError, ValueError):
            raise InvalidBoundingBox(
                "Expected (envelope, payload[, geometry]), got {!r}"
                .format(item)) from None
        yield Envelope.coerce(envelope), payload, (rest[0] if rest else None)


def _stack(node):
    return Envelopes.from_envelopes(e.envelope for e in node.entries)
