"""
Node split strategies.

A split partitions the entries of an overflowing node into two groups, each
holding at least `min_fanout` entries. Strategies are plain functions
registered in :data:`SPLITS` and selected by name from the index
configuration:

  1. ``quadratic`` (Guttman's quadratic-cost split, the default).
  1. ``linear`` (Guttman's linear-cost split, cheaper, lower quality).

Both are deterministic: ties are always resolved in favour of the entry that
comes first in the original order, and of the first group.
"""
import logging

from .envelope import Envelope
from .errors import SplitInvariantViolation

logger = logging.getLogger(__name__)


class _Group():
    """A split group and its running envelope."""
    __slots__ = ('entries', 'envelope')

    def __init__(self, seed):
        self.entries = [seed]
        self.envelope = seed.envelope

    def __len__(self):
        return len(self.entries)

    def add(self, entry):
        self.entries.append(entry)
        self.envelope = self.envelope.union(entry.envelope)

    def enlargement(self, entry):
        return self.envelope.enlargement(entry.envelope)


def _choose_group(a, b, entry):
    """Group needing the least enlargement, then smaller area, then size."""
    key_a = (a.enlargement(entry), a.envelope.area, len(a))
    key_b = (b.enlargement(entry), b.envelope.area, len(b))
    return b if key_b < key_a else a


def _distribute(remaining, a, b, min_fanout, pick_next):
    """
    Assign `remaining` entries to groups `a` and `b`.

    `pick_next(remaining, a, b)` returns the index of the next entry to
    assign. Once a group needs every remaining entry to reach `min_fanout`,
    the rest is force-assigned to it.
    """
    remaining = list(remaining)
    while remaining:
        if len(a) + len(remaining) <= min_fanout:
            for entry in remaining:
                a.add(entry)
            break
        if len(b) + len(remaining) <= min_fanout:
            for entry in remaining:
                b.add(entry)
            break
        entry = remaining.pop(pick_next(remaining, a, b))
        _choose_group(a, b, entry).add(entry)
    return a.entries, b.entries


def _quadratic_seeds(entries):
    # Pair wasting the most area when grouped together.
    best, seeds = None, (0, 1)
    for i in range(len(entries) - 1):
        ei = entries[i].envelope
        for j in range(i + 1, len(entries)):
            ej = entries[j].envelope
            waste = ei.union(ej).area - ei.area - ej.area
            if best is None or waste > best:
                best, seeds = waste, (i, j)
    return seeds


def _quadratic_pick_next(remaining, a, b):
    best, pick = None, 0
    for i, entry in enumerate(remaining):
        diff = abs(a.enlargement(entry) - b.enlargement(entry))
        if best is None or diff > best:
            best, pick = diff, i
    return pick


def quadratic_split(entries, min_fanout):
    """
    Quadratic-cost split.

    Seeds are the pair of entries whose union wastes the most area. The
    remaining entries are then assigned one at a time, always picking the
    entry with the strongest preference for one group.

    Returns:
        tuple of 2 lists of entries.
    """
    i, j = _quadratic_seeds(entries)
    a, b = _Group(entries[i]), _Group(entries[j])
    remaining = [e for k, e in enumerate(entries) if k not in (i, j)]
    return _distribute(remaining, a, b, min_fanout, _quadratic_pick_next)


def _linear_seeds(entries):
    # Pair with the greatest normalised separation along any axis.
    bounds = Envelope.merge(e.envelope for e in entries)
    best, seeds = None, (0, 1)
    for axis in range(bounds.ndims):
        width = bounds.maxs[axis] - bounds.mins[axis]
        # Entry with the highest low side and the one with the lowest high
        # side; the first in order wins ties.
        high_low = max(range(len(entries)),
                       key=lambda k: (entries[k].envelope.mins[axis], -k))
        low_high = min(range(len(entries)),
                       key=lambda k: (entries[k].envelope.maxs[axis], k))
        if high_low == low_high:
            continue
        separation = (entries[high_low].envelope.mins[axis]
                      - entries[low_high].envelope.maxs[axis])
        if width > 0:
            separation /= width
        if best is None or separation > best:
            best, seeds = separation, (low_high, high_low)
    return seeds


def linear_split(entries, min_fanout):
    """
    Linear-cost split.

    Seeds are the two entries furthest apart along the axis where they are
    the most separated, relative to the extent of the whole node. Remaining
    entries are assigned in their original order.

    Returns:
        tuple of 2 lists of entries.
    """
    i, j = _linear_seeds(entries)
    a, b = _Group(entries[i]), _Group(entries[j])
    remaining = [e for k, e in enumerate(entries) if k not in (i, j)]
    return _distribute(remaining, a, b, min_fanout, lambda r, a, b: 0)


SPLITS = {
    "quadratic": quadratic_split,
    "linear": linear_split,
}


def split(entries, min_fanout, method="quadratic"):
    """
    Splits `entries` into two groups with the strategy named `method`.

    Raises:
        ValueError: unknown method.
        SplitInvariantViolation: the strategy produced an invalid partition.
    """
    try:
        strategy = SPLITS[method]
    except KeyError:
        raise ValueError("Invalid split {!r}: must be one of {}"
                         .format(method, tuple(SPLITS))) from None
    if len(entries) < 2 * min_fanout:
        raise SplitInvariantViolation(
            "Cannot split {} entries into groups of at least {}"
            .format(len(entries), min_fanout))
    group_a, group_b = strategy(entries, min_fanout)
    if len(group_a) < min_fanout or len(group_b) < min_fanout:
        raise SplitInvariantViolation(
            "{} split produced groups of {} and {} entries, minimum is {}"
            .format(method, len(group_a), len(group_b), min_fanout))
    if len(group_a) + len(group_b) != len(entries):
        raise SplitInvariantViolation(
            "{} split of {} entries returned {} entries"
            .format(method, len(entries), len(group_a) + len(group_b)))
    logger.debug("%s split of %d entries into %d + %d", method, len(entries),
                 len(group_a), len(group_b))
    return group_a, group_b
