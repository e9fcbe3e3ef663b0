# gpstruct/src/gpstruct/grove.py
#
# Copyright (c) 2026, The gpstruct Contributors
#
# This file is part of gpstruct.
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""Functions to number and navigate the nodes of covariance function trees.

The nodes are numbered as in a heap. The root node is 1. The children of the
node :math:`i` are at :math:`b (i - 1) + k + 1` for :math:`k = 1, \\ldots, b`,
where :math:`b` is the maximum branching factor. With :math:`b = 2`, the
children of :math:`i` are :math:`2i` (left) and :math:`2i + 1` (right). The
number identifies a position in the tree, not its content: after a subtree is
regenerated, its root keeps the same number.
"""

from jax import random
from jaxtyping import Array, Key

from gpstruct.grammar import Node, children

ROOT = 1


def get_child(parent: int, k: int, max_branch: int) -> int:
    """
    Return the number of a child node.

    Parameters
    ----------
    parent
        The number of the parent node.
    k
        The position of the child, starting from 1.
    max_branch
        The maximum number of children of a node.

    Returns
    -------
    The number of the `k`-th child of `parent`.
    """
    assert 1 <= k <= max_branch
    return max_branch * (parent - 1) + k + 1


def get_parent(child: int, max_branch: int) -> int:
    """Return the number of the parent of a non-root node."""
    assert child > ROOT
    return (child - 2) // max_branch + 1


def is_descendant(node_id: int, root: int, max_branch: int) -> bool:
    """Check whether `node_id` is in the subtree rooted at `root` (inclusive)."""
    # numbers increase going down the tree, so we can stop as soon as we
    # pass the candidate ancestor
    while node_id > root:
        node_id = get_parent(node_id, max_branch)
    return node_id == root


def tree_size(node: Node) -> int:
    """Return the number of nodes in a tree."""
    return 1 + sum(tree_size(child) for child in children(node))


def node_ids(node: Node, root: int = ROOT, *, max_branch: int = 2) -> list[int]:
    """
    List the numbers of the nodes of a tree in pre-order.

    Parameters
    ----------
    node
        The tree.
    root
        The number of the tree root.
    max_branch
        The maximum number of children of a node.

    Returns
    -------
    The node numbers, parents before children, left before right.
    """
    ids = [root]
    for k, child in enumerate(children(node), start=1):
        child_id = get_child(root, k, max_branch)
        ids.extend(node_ids(child, child_id, max_branch=max_branch))
    return ids


def node_at(node: Node, index: int, root: int = ROOT, *, max_branch: int = 2) -> int:
    """
    Return the number of the node at a given position in the pre-order.

    This is the inverse of ``node_ids(node, root)[index]``, without building
    the full list.

    Raises
    ------
    IndexError
        If `index` is not in ``[0, tree_size(node))``.
    """
    if index < 0:
        msg = f'negative node index {index}'
        raise IndexError(msg)
    if index == 0:
        return root
    index -= 1
    for k, child in enumerate(children(node), start=1):
        size = tree_size(child)
        if index < size:
            child_id = get_child(root, k, max_branch)
            return node_at(child, index, child_id, max_branch=max_branch)
        index -= size
    msg = 'node index out of range'
    raise IndexError(msg)


def subtree_at(node: Node, node_id: int, *, max_branch: int = 2) -> Node:
    """
    Return the subtree at a given position.

    Raises
    ------
    KeyError
        If there is no node numbered `node_id` in the tree.
    """
    path = []
    cur = node_id
    while cur > ROOT:
        parent = get_parent(cur, max_branch)
        path.append(cur - get_child(parent, 1, max_branch))
        cur = parent
    if cur != ROOT:
        msg = f'invalid node number {node_id}'
        raise KeyError(msg)
    for k in reversed(path):
        kids = children(node)
        if k >= len(kids):
            msg = f'node {node_id} is not in the tree'
            raise KeyError(msg)
        node = kids[k]
    return node


def pick_random_node(key: Key[Array, ''], node: Node, max_branch: int) -> int:
    """
    Pick a node of a tree uniformly at random.

    Parameters
    ----------
    key
        A jax random key.
    node
        The tree.
    max_branch
        The maximum number of children of a node.

    Returns
    -------
    The number of the chosen node.

    Notes
    -----
    The nodes are counted and then indexed with the same pre-order traversal,
    so each of the ``tree_size(node)`` nodes has probability
    ``1 / tree_size(node)``.
    """
    count = tree_size(node)
    index = random.randint(key, (), 0, count)
    return node_at(node, int(index), max_branch=max_branch)
