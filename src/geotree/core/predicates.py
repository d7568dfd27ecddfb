# Copyright (C) 2018 DataStorm
#
# This file is part of GeoTree.
#
# GeoTree is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# GeoTree is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# A copy of the GNU General Public License is available in the LICENSE
# file or at <http://www.gnu.org/licenses/>.
'''
Spatial relation predicates.

Every predicate works in two stages. A first test on the envelopes either
decides the relation or declares itself inconclusive; only in the latter
case are the geometries handed to the geometry provider for an exact DE-9IM
evaluation.

Boundary rules:
  1. An empty geometry relates to nothing: every predicate is False, except
     `disjoint` which is True.
  1. Envelope tests are boundary-inclusive, so geometries sharing only an
     edge or a vertex, and zero-area geometries, reach the exact stage.
  1. `within` is `contains` with swapped arguments and `covered_by` is
     `covers` with swapped arguments, so the duals always agree.
  1. `contains` and `within` follow DE-9IM: a geometry does not contain what
     lies only on its boundary. `covers` and `covered_by` do.
  1. `disjoint` is the negation of `intersects`.
  1. `within_distance` is inclusive.
'''
import threading

from .geometry import RELATIONS, is_pattern

# Result of an inconclusive envelope test.
UNDECIDED = None


class PredicateEvaluator():
    """
    Evaluates spatial relations between referenced geometries.

    Args:
        geometries (GeometryProvider): resolves references and evaluates
            exact relations.

    Attributes:
        stats (dict): how many evaluations were decided on envelopes alone
            and how many needed the exact stage.
    """
    valid_predicates = RELATIONS + ("intersects_window", "within_distance")

    def __init__(self, geometries):
        self.geometries = geometries
        self.stats = {"envelope": 0, "exact": 0}
        self._stats_lock = threading.Lock()

    def _count(self, key):
        with self._stats_lock:
            self.stats[key] += 1

    def _envelopes(self, a, b):
        return self.geometries.envelope_of(a), self.geometries.envelope_of(b)

    def _decide(self, result, a, b, kind):
        if result is not UNDECIDED:
            self._count("envelope")
            return result
        self._count("exact")
        return self.geometries.exact_relation(a, b, kind)

    def _pruned(self, a, b, kind, prefilter):
        ea, eb = self._envelopes(a, b)
        if ea is None or eb is None:
            self._count("envelope")
            return False
        return self._decide(prefilter(ea, eb), a, b, kind)

    def evaluate(self, relation, a, b, distance=None):
        """
        Dispatches to the predicate named `relation`.

        `relation` may also be a DE-9IM pattern, evaluated exactly after the
        envelope test when the pattern requires the interiors to meet.
        """
        if relation == "within_distance":
            if distance is None:
                raise ValueError("within_distance needs a distance")
            return self.within_distance(a, b, distance)
        if relation in self.valid_predicates:
            return getattr(self, relation)(a, b)
        if is_pattern(relation):
            return self.relate(a, b, relation)
        raise ValueError("Invalid predicate {}: must be one of {}"
                         .format(relation, self.valid_predicates))

    def intersects(self, a, b):
        return self._pruned(
            a, b, "intersects",
            lambda ea, eb: UNDECIDED if ea.intersects(eb) else False)

    def disjoint(self, a, b):
        return not self.intersects(a, b)

    def contains(self, a, b):
        return self._pruned(
            a, b, "contains",
            lambda ea, eb: UNDECIDED if ea.contains(eb) else False)

    def within(self, a, b):
        return self.contains(b, a)

    def covers(self, a, b):
        return self._pruned(
            a, b, "covers",
            lambda ea, eb: UNDECIDED if ea.contains(eb) else False)

    def covered_by(self, a, b):
        return self.covers(b, a)

    def crosses(self, a, b):
        return self._pruned(
            a, b, "crosses",
            lambda ea, eb: UNDECIDED if ea.intersects(eb) else False)

    def overlaps(self, a, b):
        return self._pruned(
            a, b, "overlaps",
            lambda ea, eb: UNDECIDED if ea.intersects(eb) else False)

    def touches(self, a, b):
        return self._pruned(
            a, b, "touches",
            lambda ea, eb: UNDECIDED if ea.intersects(eb) else False)

    def intersects_window(self, a, window):
        """
        True if geometry `a` intersects the axis-aligned box `window`.

        A geometry whose envelope lies inside the window intersects it
        without further test.
        """
        def prefilter(ea, ew):
            if not ea.intersects(ew):
                return False
            if ew.contains(ea):
                return True
            return UNDECIDED
        return self._pruned(a, window, "intersects", prefilter)

    def within_distance(self, a, b, distance):
        """True if the distance between `a` and `b` is at most `distance`."""
        if distance < 0:
            raise ValueError("distance must be non-negative, got {}"
                             .format(distance))
        ea, eb = self._envelopes(a, b)
        if ea is None or eb is None:
            self._count("envelope")
            return False
        if ea.mindist(eb) > distance:
            self._count("envelope")
            return False
        if ea.maxdist(eb) <= distance:
            self._count("envelope")
            return True
        self._count("exact")
        return self.geometries.distance(a, b) <= distance

    def relate(self, a, b, pattern):
        """True if the DE-9IM matrix of `a` and `b` matches `pattern`."""
        ea, eb = self._envelopes(a, b)
        # Patterns demanding a non-empty intersection fail on disjoint boxes.
        needs_contact = any(c in "T012" for c in pattern.upper()[:2]
                            + pattern.upper()[3:5])
        if ea is None or eb is None or not ea.intersects(eb):
            if needs_contact:
                self._count("envelope")
                return False
        return self._decide(UNDECIDED, a, b, pattern)
