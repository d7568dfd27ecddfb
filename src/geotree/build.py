"""
Bulk-loading of R-trees.

Bulk-loading orders the boxes with a space-filling heuristic, packs
consecutive runs of them into full nodes, and repeats on the resulting nodes
until a single root remains. Two orderings are provided:

  1. Sort-Tile-Recurse: sort the centers along the first axis, cut them into
     vertical slabs made of whole pages, then recurse on the next axis inside
     each slab. No page straddles two slabs.
  1. Hilbert: sort the centers by their distance along a Hilbert curve
     covering the data.

Both cut each level into ``ceil(n / page_size)`` runs whose sizes differ by
at most one, so that every node is nearly full and none falls below the
minimum fanout.
"""
import logging
import math

import numpy

from .envelope import Envelopes
from .externals.hilbert import HilbertCurve

logger = logging.getLogger(__name__)

HILBERT_DEPTH = 16


def nb_pages(count, page_size):
    return max(1, math.ceil(count / page_size))


def sort_tile_recurse(envelopes, page_size=16):
    """
    Sort-Tile-Recurse runs of the envelopes.

    The level's pages are shared evenly between the slabs of each axis, and
    the boxes between the pages, so that slab boundaries fall on page
    boundaries.

    Parameters:
        envelopes (Envelopes): boxes to order.
        page_size (int): number of boxes per node.

    Returns:
        list of 1d-int-array: runs of indices, one per node, whose
        concatenation is a permutation of ``range(len(envelopes))``.
    """
    centers = envelopes.centers
    ndims = envelopes.ndims

    def sort_tile(idx, dim, pages):
        """Sort along axis `dim` and tile `pages` pages on the next axes."""
        order = idx[numpy.argsort(centers[idx, dim], kind="stable")]
        if dim == ndims - 1 or pages == 1:
            return numpy.array_split(order, pages)
        sizes = [len(run) for run in numpy.array_split(order, pages)]
        nb_slabs = math.ceil(pages ** (1 / (ndims - dim)))
        runs = []
        start = first = 0
        for slab in numpy.array_split(numpy.arange(pages), nb_slabs):
            count = sum(sizes[first:first + len(slab)])
            runs.extend(sort_tile(order[start:start + count], dim + 1,
                                  len(slab)))
            start += count
            first += len(slab)
        return runs

    return sort_tile(numpy.arange(len(envelopes)), 0,
                     nb_pages(len(envelopes), page_size))


def hilbert_sort(envelopes, page_size=16):
    """
    Hilbert order of the envelopes' centers, cut by :func:`pack`. Ties keep
    the input order.

    Returns:
        list of 1d-int-array: runs of indices, one per node.
    """
    centers = envelopes.centers
    curve = HilbertCurve(HILBERT_DEPTH, envelopes.ndims,
                         centers.min(axis=0), centers.max(axis=0))
    codes = [curve.encode(c) for c in centers.tolist()]
    perm = numpy.array(sorted(range(len(codes)), key=lambda i: (codes[i], i)),
                       dtype=int)
    return [perm[run] for run in pack(len(perm), page_size)]


ORDERS = {
    "str": sort_tile_recurse,
    "hilbert": hilbert_sort,
}


def pack(count, page_size):
    """
    Cuts ``range(count)`` into the fewest runs of at most `page_size`
    elements, with sizes differing by at most one.
    """
    return numpy.array_split(numpy.arange(count), nb_pages(count, page_size))


def build_levels(entries, page_size, make_node, order="str"):
    """
    Packs `entries` bottom-up.

    Args:
        entries (list of Entry): leaf entries.
        page_size (int): maximum fanout.
        make_node (callable): ``make_node(isleaf, entries)`` stores a node and
            returns the internal entry pointing to it.
        order (str): one of :data:`ORDERS`.

    Returns:
        tuple: (entries of the root node, height of the tree below the root).
    """
    try:
        tile = ORDERS[order]
    except KeyError:
        raise ValueError("Invalid order {!r}: must be one of {}"
                         .format(order, tuple(ORDERS))) from None
    level = list(entries)
    isleaf = True
    depth = 0
    while len(level) > page_size:
        runs = tile(Envelopes.from_envelopes(e.envelope for e in level),
                    page_size)
        level = [make_node(isleaf, [level[i] for i in run]) for run in runs]
        logger.debug("Packed level %d into %d nodes", depth, len(level))
        isleaf = False
        depth += 1
    return level, depth
