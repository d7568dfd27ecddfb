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
Geometry providers.

The index only stores envelopes and opaque geometry references. Whenever an
exact answer is needed, the references are handed to a geometry provider,
which knows how to resolve them and evaluate topological relations.

:class:`ShapelyGeometries` resolves references through any mapping (a dict,
a pandas Series, ...) of shapely geometries, or accepts shapely geometries
directly. An :class:`~geotree.envelope.Envelope` given in place of a
reference stands for the corresponding axis-aligned rectangle.
'''
import abc

import shapely.geometry
from shapely.geometry.base import BaseGeometry
import shapely.prepared

from ..envelope import Envelope


# Relations understood by exact_relation, besides DE-9IM patterns.
RELATIONS = ("contains", "covered_by", "covers", "crosses", "disjoint",
             "intersects", "overlaps", "touches", "within")


def is_pattern(kind):
    """True if `kind` is a 9-character DE-9IM pattern such as 'T*F**F***'."""
    return (len(kind) == 9
            and all(c in "TF*012" for c in kind.upper()))


class GeometryProvider(abc.ABC):
    """
    Abstract interface to the full geometries behind references.
    """

    @abc.abstractmethod
    def envelope_of(self, ref):
        """
        Returns the Envelope of the geometry `ref`, None if it is empty.
        """
        pass

    @abc.abstractmethod
    def exact_relation(self, a, b, kind):
        """
        Returns True if geometries `a` and `b` satisfy the relation `kind`,
        one of :data:`RELATIONS` or a DE-9IM pattern.
        """
        pass

    @abc.abstractmethod
    def distance(self, a, b):
        """Returns the minimum distance between geometries `a` and `b`."""
        pass

    @abc.abstractmethod
    def relate(self, a, b):
        """Returns the DE-9IM intersection matrix of `a` and `b`."""
        pass


class ShapelyGeometries(GeometryProvider):
    """
    Shapely geometries looked up by reference.

    Attributes
    ----------
    data: mapping to shapely geometries, optional
        References are looked up in it. Without data, references must be
        shapely geometries themselves.
    """
    __slots__ = ('data',)

    def __init__(self, data=None):
        self.data = data

    def __repr__(self):
        return "<{} object at 0x{:x}>".format(self.__class__.__name__,
                                              id(self))

    def geometry(self, ref):
        """Resolves `ref` into a shapely geometry."""
        if isinstance(ref, Envelope):
            return envelope_geometry(ref)
        if isinstance(ref, shapely.prepared.PreparedGeometry):
            return ref.context
        if isinstance(ref, BaseGeometry):
            return ref
        if self.data is None:
            raise KeyError(ref)
        return self.data[ref]

    def envelope_of(self, ref):
        if isinstance(ref, Envelope):
            return ref
        geom = self.geometry(ref)
        if geom.is_empty:
            return None
        return Envelope(geom.bounds)

    def exact_relation(self, a, b, kind):
        # A prepared left operand speeds up repeated tests against one
        # query geometry.
        left = a if isinstance(a, shapely.prepared.PreparedGeometry) \
            else self.geometry(a)
        right = self.geometry(b)
        if kind in RELATIONS:
            if isinstance(left, shapely.prepared.PreparedGeometry) \
                    and not hasattr(left, kind):
                left = left.context
            return bool(getattr(left, kind)(right))
        if is_pattern(kind):
            left = self.geometry(a)
            return bool(left.relate_pattern(right, kind.upper()))
        raise ValueError("Invalid relation {!r}: must be one of {} or a "
                         "DE-9IM pattern".format(kind, RELATIONS))

    def distance(self, a, b):
        return float(self.geometry(a).distance(self.geometry(b)))

    def relate(self, a, b):
        return self.geometry(a).relate(self.geometry(b))

    @staticmethod
    def prepare(geom):
        """
        Prepared version of a shapely `geom` for repeated relation tests.
        Other references are returned unchanged.
        """
        if isinstance(geom, BaseGeometry):
            return shapely.prepared.prep(geom)
        return geom


def envelope_geometry(env):
    """
    Shapely geometry covering exactly the 2d envelope `env`: a point, a
    segment or a rectangle depending on how degenerate it is.
    """
    minx, miny, maxx, maxy = env.bounds
    if minx == maxx and miny == maxy:
        return shapely.geometry.Point(minx, miny)
    if minx == maxx or miny == maxy:
        return shapely.geometry.LineString([(minx, miny), (maxx, maxy)])
    return shapely.geometry.box(minx, miny, maxx, maxy)
