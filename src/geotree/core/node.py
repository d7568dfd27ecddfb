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
Tree nodes and their entries.

The data model is the following:
  1. Nodes are identified by opaque references handed out by a node store;
     a node never holds another node directly.
  1. There are 2 types of nodes:
         a. internal nodes, whose entries reference child nodes.
         a. leaf nodes, whose entries reference a payload and a geometry.
  1. Each entry carries the envelope of what it references. For internal
     entries it is the union of the child's own entries.
  1. A node knows the reference of its parent (None for the root). It is
     only used to walk up the tree, ownership goes from parent to child.
  1. Leaf entries carry a sequence number given at first insertion. It
     survives reinsertion and orders otherwise equal query results.
'''
import collections

from ..envelope import Envelopes


class Entry(collections.namedtuple('Entry_',
                                   'envelope child payload geometry seq')):
    """
    A node entry.

    Internal entries have `child` set to the child node reference; leaf
    entries have `child` set to None and carry `payload`, `geometry` and
    `seq`.
    """
    __slots__ = ()

    @classmethod
    def leaf(cls, envelope, payload, geometry=None, seq=0):
        return cls(envelope, None, payload, geometry, seq)

    @classmethod
    def internal(cls, envelope, child):
        return cls(envelope, child, None, None, 0)

    @property
    def isleaf(self):
        return self.child is None

    def matches(self, envelope, payload):
        return self.envelope == envelope and self.payload == payload


class Node():
    """
    A tree node: a leaf flag, an ordered list of entries and a parent link.

    Attributes:
        ref: reference under which the node is stored (None until written).
        isleaf (bool): whether entries are leaf entries.
        entries (list of Entry): the node's entries.
        parent: reference of the parent node, None for the root.
    """
    __slots__ = ('ref', 'isleaf', 'entries', 'parent')

    def __init__(self, isleaf, entries=(), parent=None, ref=None):
        self.ref = ref
        self.isleaf = isleaf
        self.entries = list(entries)
        self.parent = parent

    def __repr__(self):
        return "<Node ref={} {} entries={} parent={}>".format(
            self.ref, "leaf" if self.isleaf else "internal",
            len(self.entries), self.parent)

    def __len__(self):
        return len(self.entries)

    def copy(self):
        return Node(self.isleaf, self.entries, self.parent, self.ref)

    @property
    def is_root(self):
        return self.parent is None

    def envelope(self):
        """Union of the entries' envelopes, None for an empty node."""
        if not self.entries:
            return None
        return Envelopes.from_envelopes(e.envelope for e in self.entries) \
            .merge()

    def position(self, child):
        """Index of the entry referencing `child`."""
        for i, entry in enumerate(self.entries):
            if entry.child == child:
                return i
        raise KeyError(child)

    def update_child(self, child, envelope):
        """Replace the envelope stored for `child`."""
        i = self.position(child)
        self.entries[i] = self.entries[i]._replace(envelope=envelope)
