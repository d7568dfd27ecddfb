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
"""
Node storage.

The index never keeps nodes itself: it reads and writes them through a
:class:`NodeStore`, together with the tree metadata (root reference and
height). Any backend offering atomic replace-on-write of a single node can
be plugged in. :class:`MemoryStore` keeps nodes in a dictionary arena.
"""
import abc
import logging

from ..errors import CorruptNode

logger = logging.getLogger(__name__)


class NodeStore(abc.ABC):
    """Abstract interface of a node storage backend."""

    @abc.abstractmethod
    def read_node(self, ref):
        """Returns the node stored under `ref`."""
        pass

    @abc.abstractmethod
    def write_node(self, ref, node):
        """
        Stores `node` under `ref`, replacing the previous version.

        A `ref` of None allocates a new reference. Returns the reference.
        """
        pass

    @abc.abstractmethod
    def free_node(self, ref):
        """Releases the node stored under `ref`."""
        pass

    @abc.abstractmethod
    def load_root_ref(self):
        pass

    @abc.abstractmethod
    def store_root_ref(self, ref):
        pass

    @abc.abstractmethod
    def load_height(self):
        pass

    @abc.abstractmethod
    def store_height(self, height):
        pass


class MemoryStore(NodeStore):
    """
    In-memory node arena.

    Nodes are copied on read and on write, so a node obtained from the store
    can be modified freely and only becomes visible once written back.

    Attributes:
        version (int): incremented by every write and free.
        stats (dict): counters of reads, writes and frees.
    """
    def __init__(self):
        self._nodes = {}
        self._next_ref = 1
        self._root = None
        self._height = 0
        self.version = 0
        self.stats = {"reads": 0, "writes": 0, "frees": 0}

    def __len__(self):
        return len(self._nodes)

    def __contains__(self, ref):
        return ref in self._nodes

    def refs(self):
        return list(self._nodes)

    def read_node(self, ref):
        try:
            node = self._nodes[ref]
        except KeyError:
            raise CorruptNode("Dangling node reference {!r}".format(ref)) \
                from None
        self.stats["reads"] += 1
        return node.copy()

    def write_node(self, ref, node):
        if ref is None:
            ref = self._next_ref
            self._next_ref += 1
        node = node.copy()
        node.ref = ref
        self._nodes[ref] = node
        self.version += 1
        self.stats["writes"] += 1
        return ref

    def free_node(self, ref):
        if self._nodes.pop(ref, None) is None:
            raise CorruptNode("Freeing unknown node reference {!r}"
                              .format(ref))
        self.version += 1
        self.stats["frees"] += 1

    def load_root_ref(self):
        return self._root

    def store_root_ref(self, ref):
        logger.debug("Root reference set to %r", ref)
        self._root = ref

    def load_height(self):
        return self._height

    def store_height(self, height):
        self._height = height
