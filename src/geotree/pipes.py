"""
Lazy query pipelines over an :class:`~geotree.tree.RTreeIndex`.

A pipeline is a source (an index search or a nearest neighbours traversal)
followed by a chain of stages, each wrapping the iterator of the previous
one. Pipelines are immutable: every chaining method returns a new pipeline
and leaves the index untouched. Iterating a pipeline rebuilds the whole
chain from the index, so the same pipeline can be iterated many times, and
abandoning an iteration only drops its iterators.

Example:
    >>> pipe = (QueryPipeline.start_nearest(index, (15., 15.))
    ...         .range(100, 199)
    ...         .copy_properties(records, ["name"]))
    >>> [flow.properties["name"] for flow in pipe]

Elements flowing through a pipeline are :class:`Flow` tuples. Stages that
copy properties build new flows, so flows skipped by :meth:`range` are never
looked up.
"""
import collections
import heapq

import toolz

from .core.geometry import is_pattern
from .core.predicates import PredicateEvaluator
from .envelope import Envelope

Flow = collections.namedtuple("Flow", "entry distance properties")
# entry: the index leaf entry.
# distance: distance to the reference geometry of a nearest search, or None.
# properties: dict of copied record properties.


def operand(entry):
    """Geometry reference of a leaf entry, its envelope if it has none."""
    return entry.envelope if entry.geometry is None else entry.geometry


def _true_nearest(index, geom, geometries, k, max_distance):
    """
    Entries by increasing true distance to `geom`.

    The index yields candidates by increasing envelope distance, which is a
    lower bound of the true distance. A refined candidate is emitted as soon
    as no further candidate can be strictly closer.
    """
    envelope = geometries.envelope_of(geom)
    if envelope is None or k == 0:
        return
    pending = []
    emitted = 0
    for entry, lower in index.nearest(envelope, max_distance=max_distance):
        while pending and pending[0][0] < lower:
            dist, _, done = heapq.heappop(pending)
            yield Flow(done, dist, {})
            emitted += 1
            if k is not None and emitted >= k:
                return
        dist = geometries.distance(geom, operand(entry))
        if max_distance is None or dist <= max_distance:
            heapq.heappush(pending, (dist, entry.seq, entry))
    while pending:
        dist, _, done = heapq.heappop(pending)
        yield Flow(done, dist, {})
        emitted += 1
        if k is not None and emitted >= k:
            return


class QueryPipeline():
    """
    Immutable chain of lazy query stages.

    Args:
        index (RTreeIndex): the queried index, only read.
        source (callable): returns a fresh iterator of flows.
        stages (tuple of callables): each maps an iterator of flows to a new
            iterator.
    """
    def __init__(self, index, source, stages=()):
        self.index = index
        self._source = source
        self._stages = tuple(stages)

    def __repr__(self):
        return "<{} stages={}>".format(self.__class__.__name__,
                                       len(self._stages))

    def __iter__(self):
        flows = self._source()
        for stage in self._stages:
            flows = stage(flows)
        return iter(flows)

    def _chain(self, stage):
        return self.__class__(self.index, self._source,
                              self._stages + (stage,))

    # ------------------------------------------------------------------
    # Starters

    @classmethod
    def start_search(cls, index, window=None):
        """Entries whose envelope intersects `window` (None for all)."""
        if window is not None:
            window = Envelope.coerce(window)
        return cls(index, lambda: (Flow(e, None, {})
                                   for e in index.search(window)))

    @classmethod
    def start_intersect_window(cls, index, window, geometries):
        """Entries whose geometry intersects the box `window`."""
        window = Envelope.coerce(window)
        evaluator = PredicateEvaluator(geometries)
        return cls.start_search(index, window).where(
            "intersects_window", window, evaluator)

    @classmethod
    def start_within_distance(cls, index, geom, distance, geometries):
        """Entries whose geometry lies at most `distance` from `geom`."""
        evaluator = PredicateEvaluator(geometries)
        envelope = geometries.envelope_of(geom)
        if envelope is None:
            return cls(index, lambda: iter(()))
        return cls.start_search(index, envelope.expand(distance)) \
            .within_distance(geom, distance, evaluator)

    @classmethod
    def start_nearest(cls, index, point, k=None, max_distance=None,
                      geometries=None):
        """
        Entries by increasing distance to `point`.

        Without `geometries`, distances are measured to the entries'
        envelopes, which is exact for point data. With a geometry provider,
        `point` may be any geometry and distances are the true distances
        between geometries.

        Args:
            k (int, optional): number of neighbours, None for all.
            max_distance (float, optional): inclusive distance bound.
        """
        if k is not None and k < 0:
            raise ValueError("k must be non-negative, got {}".format(k))
        if geometries is None:
            point = Envelope.coerce(point)
            return cls(index, lambda: (
                Flow(e, d, {}) for e, d in index.nearest(point, k,
                                                         max_distance)))
        return cls(index, lambda: _true_nearest(index, point, geometries,
                                                k, max_distance))

    # ------------------------------------------------------------------
    # Stages

    def filter(self, fnc):
        """Keeps flows for which ``fnc(flow)`` is true."""
        return self._chain(lambda flows: filter(fnc, flows))

    def where(self, relation, other, evaluator, distance=None):
        """
        Keeps flows whose geometry satisfies ``relation(geometry, other)``.

        Args:
            relation (str): a predicate name of
                :class:`~geotree.core.predicates.PredicateEvaluator` or a
                DE-9IM pattern.
            other: reference of the query geometry, or an Envelope.
            evaluator (PredicateEvaluator): evaluates the relation.
            distance (float, optional): threshold for ``within_distance``.
        """
        if (relation not in PredicateEvaluator.valid_predicates
                and not is_pattern(relation)):
            raise ValueError("Invalid predicate {!r}".format(relation))
        if relation == "within_distance" and (distance is None
                                               or distance < 0):
            raise ValueError("within_distance needs a non-negative distance, "
                             "got {}".format(distance))
        prepare = getattr(evaluator.geometries, "prepare", None)
        if prepare is not None:
            other = prepare(other)

        def stage(flows):
            for flow in flows:
                if evaluator.evaluate(relation, operand(flow.entry), other,
                                      distance=distance):
                    yield flow
        return self._chain(stage)

    def within_distance(self, other, distance, evaluator):
        return self.where("within_distance", other, evaluator,
                          distance=distance)

    def range(self, low, high):
        """
        Skips the first `low` flows and keeps up to ``high - low + 1`` more
        (`high` is inclusive).
        """
        if low < 0 or high < low:
            raise ValueError("Invalid range [{}, {}]".format(low, high))
        return self._chain(
            lambda flows: toolz.take(high - low + 1, toolz.drop(low, flows)))

    def limit(self, count):
        return self._chain(lambda flows: toolz.take(count, flows))

    def sort(self, key=None, reverse=False):
        """Sorts flows, by distance by default. Consumes the whole input."""
        if key is None:
            def key(flow):
                return (flow.distance, flow.entry.seq)
        return self._chain(lambda flows: iter(sorted(flows, key=key,
                                                     reverse=reverse)))

    def copy_properties(self, lookup, keys):
        """
        Copies record properties into each flow.

        Args:
            lookup: mapping or callable giving the record (a mapping) of a
                payload.
            keys (list of str): properties to copy. Missing keys are
                skipped.
        """
        get = lookup if callable(lookup) else lookup.__getitem__
        keys = tuple(keys)

        def copy(flow):
            record = get(flow.entry.payload)
            props = dict(flow.properties)
            props.update((k, record[k]) for k in keys if k in record)
            return flow._replace(properties=props)
        return self._chain(lambda flows: map(copy, flows))

    def project(self, fnc):
        """
        Maps every flow through `fnc`. Stages expecting flows cannot follow.
        """
        return self._chain(lambda flows: map(fnc, flows))

    # ------------------------------------------------------------------
    # Terminals

    def to_list(self):
        return list(self)

    def first(self):
        """First flow, None if the pipeline is empty."""
        return next(iter(self), None)

    def count(self):
        return toolz.count(self)

    def payloads(self):
        return [flow.entry.payload for flow in self]
