"""
Axis-aligned bounding boxes.

:class:`Envelope` is the scalar value type used by the tree, its nodes and
the predicates. :class:`Envelopes` is its vectorised counterpart: a stack of
boxes held in two ``(n, ndims)`` arrays, used wherever a whole node (or a
whole dataset) is scored at once.
"""
import math
import numbers

import numpy

from .errors import InvalidBoundingBox


class Envelope():
    """
    Immutable axis-aligned bounding box in any number of dimensions.

    Either pass the four 2d bounds ``minx, miny, maxx, maxy`` (as separate
    arguments or as one sequence, in the order of shapely's ``bounds``), or
    use :meth:`from_mins_maxs` for other dimensions.

    Boundaries are closed: boxes sharing an edge or a corner intersect, and a
    degenerate box (min == max on every axis) is a point.
    """
    __slots__ = ('mins', 'maxs')

    def __init__(self, *args):
        if len(args) == 1:
            args = tuple(args[0])
        if len(args) != 4:
            raise InvalidBoundingBox(
                "Expected minx, miny, maxx, maxy, got {!r}".format(args))
        self._set(args[:2], args[2:])

    def _set(self, mins, maxs):
        try:
            mins = tuple(float(v) for v in mins)
            maxs = tuple(float(v) for v in maxs)
        except (TypeError, ValueError) as exc:
            raise InvalidBoundingBox(str(exc)) from exc
        if len(mins) != len(maxs) or not mins:
            raise InvalidBoundingBox(
                "Mins and maxs must have the same non-zero length")
        for axis, (lo, hi) in enumerate(zip(mins, maxs)):
            if math.isnan(lo) or math.isnan(hi):
                raise InvalidBoundingBox("NaN bound on axis {}".format(axis))
            if lo > hi:
                raise InvalidBoundingBox(
                    "min {} > max {} on axis {}".format(lo, hi, axis))
        object.__setattr__(self, 'mins', mins)
        object.__setattr__(self, 'maxs', maxs)

    def __setattr__(self, name, value):
        raise AttributeError("Envelope is immutable")

    @classmethod
    def from_mins_maxs(cls, mins, maxs):
        env = cls.__new__(cls)
        env._set(mins, maxs)
        return env

    @classmethod
    def point(cls, *coords):
        if len(coords) == 1:
            coords = tuple(coords[0])
        return cls.from_mins_maxs(coords, coords)

    @classmethod
    def coerce(cls, obj):
        """
        Returns `obj` as an Envelope.

        Accepts an Envelope, anything with a shapely-like ``bounds``
        attribute, a 2-sequence (a point) or a 4-sequence (a 2d box).
        """
        if isinstance(obj, cls):
            return obj
        if hasattr(obj, 'bounds'):
            return cls(obj.bounds)
        try:
            coords = tuple(obj)
        except TypeError:
            raise InvalidBoundingBox(
                "Cannot build an envelope from {!r}".format(obj)) from None
        if len(coords) == 2 and all(isinstance(c, numbers.Real)
                                    for c in coords):
            return cls.point(coords)
        return cls(coords)

    @classmethod
    def merge(cls, collection):
        """Returns the union of a non-empty collection of envelopes."""
        collection = iter(collection)
        first = next(collection)
        mins, maxs = list(first.mins), list(first.maxs)
        for env in collection:
            first.check_dims(env)
            mins = [min(a, b) for a, b in zip(mins, env.mins)]
            maxs = [max(a, b) for a, b in zip(maxs, env.maxs)]
        return cls.from_mins_maxs(mins, maxs)

    def __repr__(self):
        if self.ndims == 2:
            return "Envelope(minx={}, miny={}, maxx={}, maxy={})".format(
                *self.bounds)
        return "Envelope(mins={}, maxs={})".format(self.mins, self.maxs)

    def __eq__(self, other):
        if not isinstance(other, Envelope):
            return NotImplemented
        return self.mins == other.mins and self.maxs == other.maxs

    def __hash__(self):
        return hash((self.mins, self.maxs))

    def __reduce__(self):
        return (self.__class__.from_mins_maxs, (self.mins, self.maxs))

    @property
    def ndims(self):
        return len(self.mins)

    @property
    def bounds(self):
        """Bounds in shapely order: all mins followed by all maxs."""
        return self.mins + self.maxs

    @property
    def is_point(self):
        return self.mins == self.maxs

    def check_dims(self, other):
        if self.ndims != other.ndims:
            raise InvalidBoundingBox(
                "Incompatible number of dimensions {} and {}"
                .format(self.ndims, other.ndims))

    @property
    def center(self):
        return tuple(0.5 * (lo + hi) for lo, hi in zip(self.mins, self.maxs))

    @property
    def area(self):
        res = 1.
        for lo, hi in zip(self.mins, self.maxs):
            res *= hi - lo
        return res

    @property
    def margin(self):
        """Sum of the edge lengths (half the perimeter in 2d)."""
        return sum(hi - lo for lo, hi in zip(self.mins, self.maxs))

    def union(self, other):
        self.check_dims(other)
        return Envelope.from_mins_maxs(
            [min(a, b) for a, b in zip(self.mins, other.mins)],
            [max(a, b) for a, b in zip(self.maxs, other.maxs)],
        )

    def intersection(self, other):
        """Returns the common box, or None when the boxes are disjoint."""
        if not self.intersects(other):
            return None
        return Envelope.from_mins_maxs(
            [max(a, b) for a, b in zip(self.mins, other.mins)],
            [min(a, b) for a, b in zip(self.maxs, other.maxs)],
        )

    def intersects(self, other):
        self.check_dims(other)
        return all(lo <= ohi and olo <= hi for lo, hi, olo, ohi
                   in zip(self.mins, self.maxs, other.mins, other.maxs))

    def contains(self, other):
        """True if `other` lies inside `self`, boundaries included."""
        self.check_dims(other)
        return all(lo <= olo and ohi <= hi for lo, hi, olo, ohi
                   in zip(self.mins, self.maxs, other.mins, other.maxs))

    def expand(self, distance):
        """Box grown by `distance` on every side."""
        return Envelope.from_mins_maxs([lo - distance for lo in self.mins],
                                       [hi + distance for hi in self.maxs])

    def enlargement(self, other):
        """Area growth needed for `self` to include `other`."""
        return self.union(other).area - self.area

    def _dist_by_dims(self, other):
        return [max(olo - hi, lo - ohi, 0.) for lo, hi, olo, ohi
                in zip(self.mins, self.maxs, other.mins, other.maxs)]

    def mindist(self, other):
        """
        Lower bound on the distance between geometries enclosed by `self`
        and `other`. Zero when the boxes intersect.
        """
        self.check_dims(other)
        return math.sqrt(sum(d * d for d in self._dist_by_dims(other)))

    def maxdist(self, other):
        """
        Upper bound on the distance between any point of `self` and any
        point of `other`.
        """
        self.check_dims(other)
        return math.sqrt(sum(
            max(abs(hi - olo), abs(ohi - lo)) ** 2 for lo, hi, olo, ohi
            in zip(self.mins, self.maxs, other.mins, other.maxs)))


class Envelopes():
    """
    A stack of envelopes stored as numpy arrays for vectorised scoring.

    Args:
        mins: (n, ndims) array of lower bounds.
        maxs: (n, ndims) array of upper bounds.
    """
    def __init__(self, mins, maxs):
        mins = numpy.asarray(mins, dtype=float)
        maxs = numpy.asarray(maxs, dtype=float)
        if mins.shape != maxs.shape or mins.ndim != 2:
            raise InvalidBoundingBox("Mins and maxs must be of same 2d shape")
        self.mins = mins
        self.maxs = maxs

    @classmethod
    def from_envelopes(cls, envelopes):
        envelopes = list(envelopes)
        if not envelopes:
            return cls(numpy.empty((0, 2)), numpy.empty((0, 2)))
        return cls([e.mins for e in envelopes], [e.maxs for e in envelopes])

    def __len__(self):
        return self.mins.shape[0]

    @property
    def ndims(self):
        return self.mins.shape[1]

    @property
    def centers(self):
        return 0.5 * (self.mins + self.maxs)

    @property
    def areas(self):
        return (self.maxs - self.mins).prod(axis=1)

    def merge(self):
        """Union of all the stacked envelopes."""
        return Envelope.from_mins_maxs(self.mins.min(axis=0),
                                       self.maxs.max(axis=0))

    def union_areas(self, env):
        """Area of each stacked envelope once grown to include `env`."""
        mins = numpy.minimum(self.mins, env.mins)
        maxs = numpy.maximum(self.maxs, env.maxs)
        return (maxs - mins).prod(axis=1)

    def enlargements(self, env):
        return self.union_areas(env) - self.areas

    def mindist(self, env):
        """Distance from `env` to each stacked envelope (0 if intersecting)."""
        lo = numpy.asarray(env.mins)
        hi = numpy.asarray(env.maxs)
        dist = numpy.maximum(numpy.maximum(self.mins - hi, lo - self.maxs), 0.)
        return numpy.sqrt((dist ** 2).sum(axis=1))

    def intersects(self, env):
        return ((self.mins <= numpy.asarray(env.maxs))
                & (self.maxs >= numpy.asarray(env.mins))).all(axis=1)

    def contains(self, env):
        """Whether each stacked envelope contains `env`, boundaries included."""
        return ((self.mins <= numpy.asarray(env.mins))
                & (self.maxs >= numpy.asarray(env.maxs))).all(axis=1)
