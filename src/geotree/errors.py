"""
Exceptions raised by geotree.

Each error also derives from the built-in exception callers would naturally
catch for it, so ``except ValueError`` keeps working for a bad bounding box.
"""


class GeoTreeError(Exception):
    """Base class of all geotree errors."""


class InvalidBoundingBox(GeoTreeError, ValueError):
    """A box with min > max on some axis, NaN bounds, or a wrong shape."""


class EntryNotFound(GeoTreeError, KeyError):
    """No entry matches the requested (box, payload) pair."""


class CorruptNode(GeoTreeError, RuntimeError):
    """A stored node is inconsistent with the tree structure."""


class SplitInvariantViolation(GeoTreeError, AssertionError):
    """A split strategy produced an invalid partition."""


class ConcurrentModification(GeoTreeError, RuntimeError):
    """The index was mutated while a query was being iterated."""
