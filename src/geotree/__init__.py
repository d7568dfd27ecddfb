"""
Spatial indexing and querying of two-dimensional geometries.

The index is a dynamic R-tree keyed by bounding boxes. Nodes are kept in a
pluggable node store and addressed by opaque references, so that reparenting
during splits and condensing is a mere reference update. Overflowing nodes
are split by a configurable strategy (quadratic or linear), underflowing ones
are dissolved and their entries reinserted. A whole dataset can also be
bulk-loaded with a Sort-Tile-Recurse or Hilbert packing.

On top of the index, predicates decide DE-9IM relations (contains, covers,
crosses, touches, ...) first on bounding boxes and then, when needed, on the
exact geometries through shapely. Query pipelines chain index searches,
nearest neighbours traversals, predicate filters and paging lazily.
"""
from .envelope import Envelope, Envelopes  # noqa: F401
from .errors import (  # noqa: F401
    GeoTreeError, InvalidBoundingBox, EntryNotFound, CorruptNode,
    SplitInvariantViolation, ConcurrentModification,
)
from .tree import RTreeIndex  # noqa: F401
from .core.geometry import GeometryProvider, ShapelyGeometries  # noqa: F401
from .core.predicates import PredicateEvaluator  # noqa: F401
from .core.storage import NodeStore, MemoryStore  # noqa: F401
from .pipes import QueryPipeline, Flow  # noqa: F401

__version__ = "0.3.0"
