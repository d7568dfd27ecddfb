"""
Index configuration.

A :class:`Config` is an immutable bundle of the keyword arguments accepted by
:class:`geotree.tree.RTreeIndex`. Build it with :func:`make_config`, which
fills in defaults and validates the combination.
"""
import collections


DEFAULT_MAX_FANOUT = 16
DEFAULT_SPLIT = "quadratic"
MIN_FANOUT_RATIO = 0.4

Config = collections.namedtuple(
    "Config", "max_fanout min_fanout split verify_reads")


def make_config(max_fanout=DEFAULT_MAX_FANOUT, min_fanout=None,
                split=DEFAULT_SPLIT, verify_reads=False):
    """
    Args:
        max_fanout (int): maximum number of entries per node.
        min_fanout (int, optional): minimum number of entries per non-root
            node. Defaults to 40% of `max_fanout` (at least 1).
        split (str): name of the split strategy, see
            :data:`geotree.split.SPLITS`.
        verify_reads (bool): check each node read during queries against the
            envelope declared by its parent.

    Raises:
        ValueError: if the fanout bounds cannot be honoured by a split.
    """
    from .split import SPLITS

    if max_fanout < 2:
        raise ValueError("max_fanout must be at least 2, got {}"
                         .format(max_fanout))
    if min_fanout is None:
        min_fanout = max(1, int(max_fanout * MIN_FANOUT_RATIO))
    # A split of max_fanout + 1 entries must leave both groups valid.
    if not 1 <= min_fanout <= (max_fanout + 1) // 2:
        raise ValueError(
            "min_fanout must be in [1, {}] for max_fanout={}, got {}"
            .format((max_fanout + 1) // 2, max_fanout, min_fanout))
    if split not in SPLITS:
        raise ValueError("Invalid split {!r}: must be one of {}"
                         .format(split, tuple(SPLITS)))
    return Config(int(max_fanout), int(min_fanout), split, bool(verify_reads))
