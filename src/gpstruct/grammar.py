# gpstruct/src/gpstruct/grammar.py
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

"""The grammar of covariance functions.

A covariance function is a tree of nodes. The leaves are the base kernels
`Constant`, `Linear`, `SquaredExponential` and `Periodic`, the internal nodes
are the binary combinators `Plus` and `Times`. Nodes are immutable: a proposal
that modifies a tree always produces a new tree.
"""

from enum import IntEnum

from equinox import Module, field
from jaxtyping import Array, Float


class NodeKind(IntEnum):
    """The kinds of node, numbered as the outcomes of the node type prior."""

    constant = 0
    linear = 1
    squared_exp = 2
    periodic = 3
    plus = 4
    times = 5


class Constant(Module):
    """Constant kernel, ``k(x, y) = param``."""

    param: Float[Array, ''] | float


class Linear(Module):
    """Linear kernel, ``k(x, y) = (x - param) (y - param)``."""

    param: Float[Array, ''] | float


class SquaredExponential(Module):
    """Squared exponential kernel, ``k(x, y) = exp(-(x - y)^2 / (2 l))``."""

    length_scale: Float[Array, ''] | float


class Periodic(Module):
    """
    Periodic kernel.

    ``k(x, y) = exp(-sin(2 pi |x - y| / period)^2 / scale)``.
    """

    scale: Float[Array, ''] | float
    period: Float[Array, ''] | float


class Plus(Module):
    """Sum of two covariance functions."""

    left: 'Node'
    right: 'Node'


class Times(Module):
    """Product of two covariance functions."""

    left: 'Node'
    right: 'Node'


LeafNode = Constant | Linear | SquaredExponential | Periodic
BinaryOpNode = Plus | Times
Node = LeafNode | BinaryOpNode

_KIND_OF_CLASS = {
    Constant: NodeKind.constant,
    Linear: NodeKind.linear,
    SquaredExponential: NodeKind.squared_exp,
    Periodic: NodeKind.periodic,
    Plus: NodeKind.plus,
    Times: NodeKind.times,
}

_NUM_CHILDREN = {
    NodeKind.constant: 0,
    NodeKind.linear: 0,
    NodeKind.squared_exp: 0,
    NodeKind.periodic: 0,
    NodeKind.plus: 2,
    NodeKind.times: 2,
}

# every kind must be covered
assert set(_KIND_OF_CLASS.values()) == set(NodeKind)
assert set(_NUM_CHILDREN) == set(NodeKind)


def kind_of(node: Node) -> NodeKind:
    """
    Return the kind of a node.

    Raises
    ------
    TypeError
        If `node` is not one of the six node classes.
    """
    try:
        return _KIND_OF_CLASS[type(node)]
    except KeyError:
        msg = f'not a covariance function node: {node!r}'
        raise TypeError(msg) from None


def num_children(kind: NodeKind | int) -> int:
    """
    Return the number of children required by a kind of node.

    Parameters
    ----------
    kind
        The node kind. Plain integers are interpreted as `NodeKind` values.

    Returns
    -------
    0 for base kernels, 2 for combinators.

    Raises
    ------
    ValueError
        If `kind` is not a valid node kind.
    """
    return _NUM_CHILDREN[NodeKind(kind)]


def children(node: Node) -> tuple[Node, ...]:
    """Return the children of a node, in order."""
    if isinstance(node, Plus | Times):
        return node.left, node.right
    kind_of(node)  # raise on foreign objects
    return ()


class Grammar(Module):
    """
    Configuration of the prior over covariance functions and noise.

    Parameters
    ----------
    node_probs
        The prior probability of each node kind, in the order of `NodeKind`.
    max_branch
        The maximum number of children of a node. Fixes the numbering of the
        nodes, see `gpstruct.grove.get_child`.
    param_floor
        Added to the uniform(0, 1) draws of the length scale, scale and period
        parameters to keep them away from zero.
    noise_shape
    noise_rate
        The parameters of the gamma prior on the noise variance.
    noise_floor
        Added to the gamma draw to obtain the noise variance.
    """

    node_probs: tuple[float, ...] = field(
        static=True, default=(0.2, 0.2, 0.2, 0.2, 0.1, 0.1)
    )
    max_branch: int = field(static=True, default=2)
    param_floor: float = field(static=True, default=0.01)
    noise_shape: float = field(static=True, default=1.0)
    noise_rate: float = field(static=True, default=1.0)
    noise_floor: float = field(static=True, default=0.01)

    def __check_init__(self):
        if len(self.node_probs) != len(NodeKind):
            msg = f'node_probs must have {len(NodeKind)} entries, got {len(self.node_probs)}'
            raise ValueError(msg)
        if any(p < 0 for p in self.node_probs) or abs(sum(self.node_probs) - 1) > 1e-6:
            msg = f'node_probs must be a probability vector, got {self.node_probs}'
            raise ValueError(msg)
        if self.max_branch < max(_NUM_CHILDREN.values()):
            msg = f'max_branch={self.max_branch} is too small for binary combinators'
            raise ValueError(msg)
