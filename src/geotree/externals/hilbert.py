"""
Hilbert curve encoding, used to order boxes before packing them.

Adapted from the transpose-based algorithm of John Skilling, "Programming
the Hilbert curve", AIP Conference Proceedings 707, 2004.
"""


class HilbertCurve:
    """
    Hilbert curve of `depth` iterations over the box ``[mins, maxs]`` in
    `ndims` dimensions. Each axis is scaled onto ``2 ** depth`` cells.
    """
    def __init__(self, depth, ndims, mins, maxs):
        self.depth = depth
        self.dim = ndims
        self.mins = list(mins)
        self.maxs = list(maxs)

    def _grid(self, g):
        """Cell coordinates of the point `g`."""
        last = (1 << self.depth) - 1
        return [0 if hi <= lo else int(round((v - lo) * last / (hi - lo)))
                for lo, hi, v in zip(self.mins, self.maxs, g)]

    def encode(self, g):
        """
        Distance along the curve of the point `g`.

        Raises:
            ValueError: `g` lies outside ``[mins, maxs]``.
        """
        if len(g) != self.dim:
            raise ValueError("Point {} must have {} dimensions"
                             .format(g, self.dim))
        x = self._grid(g)
        side = 1 << self.depth
        if not all(0 <= v < side for v in x):
            raise ValueError("Point {} lies outside the curve's region"
                             .format(g))

        # Undo the rotations and reflections, from the highest bit down.
        q = side >> 1
        while q > 1:
            low = q - 1
            for i in range(self.dim):
                if x[i] & q:
                    x[0] ^= low
                else:
                    swap = (x[0] ^ x[i]) & low
                    x[0] ^= swap
                    x[i] ^= swap
            q >>= 1

        # Gray code.
        for i in range(1, self.dim):
            x[i] ^= x[i - 1]
        flip = 0
        q = side >> 1
        while q > 1:
            if x[-1] & q:
                flip ^= q - 1
            q >>= 1

        # Interleave the transposed bits, most significant first.
        h = 0
        for bit in reversed(range(self.depth)):
            for v in x:
                h = (h << 1) | (((v ^ flip) >> bit) & 1)
        return h
