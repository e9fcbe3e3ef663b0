# gpstruct/src/gpstruct/debug.py
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

"""Debugging utilities. The main functions are `format_tree` and `check_trace`."""

import math

from jax import numpy as jnp

from gpstruct.choices import Role, tree_address
from gpstruct.grammar import (
    Constant,
    Linear,
    Node,
    NodeKind,
    Periodic,
    SquaredExponential,
    children,
    kind_of,
    num_children,
)
from gpstruct.grove import ROOT, get_child, node_ids, subtree_at
from gpstruct.model import NOISE, YS, Trace

_LEAF_FIELDS = {
    NodeKind.constant: ('param',),
    NodeKind.linear: ('param',),
    NodeKind.squared_exp: ('length_scale',),
    NodeKind.periodic: ('scale', 'period'),
    NodeKind.plus: (),
    NodeKind.times: (),
}


def format_tree(node: Node, *, max_branch: int = 2) -> str:
    """Convert a covariance function to a human-readable string.

    Parameters
    ----------
    node
        The covariance function.
    max_branch
        The maximum number of children of a node, used to number the nodes.

    Returns
    -------
    A string representation of the tree, one node per line, with the node
    numbers on the left.
    """
    tee = '├──'
    corner = '└──'
    join = '│  '
    space = '   '

    def node_str(node):
        if isinstance(node, Constant):
            return f'Constant({node.param:#.2g})'
        elif isinstance(node, Linear):
            return f'Linear({node.param:#.2g})'
        elif isinstance(node, SquaredExponential):
            return f'SquaredExponential({node.length_scale:#.2g})'
        elif isinstance(node, Periodic):
            return f'Periodic({node.scale:#.2g}, {node.period:#.2g})'
        else:
            return type(node).__name__

    ndigits = len(str(max(node_ids(node, max_branch=max_branch))))

    def traverse(lines, node, index, indent, first_indent, next_indent):
        number = str(index).rjust(ndigits)
        lines.append(f' {number} {indent}{first_indent}{node_str(node)}')
        indent += next_indent
        kids = children(node)
        for k, child in enumerate(kids, start=1):
            last = k == len(kids)
            traverse(
                lines,
                child,
                get_child(index, k, max_branch),
                indent,
                corner if last else tee,
                space if last else join,
            )

    lines = []
    traverse(lines, node, ROOT, '', '', '')
    return '\n'.join(lines)


def check_tree(node: Node) -> bool:
    """Check that an object is a valid covariance function tree."""
    try:
        kind = kind_of(node)
    except TypeError:
        return False
    kids = children(node)
    if len(kids) != num_children(kind):
        return False
    if not kids:
        values = [getattr(node, name) for name in _LEAF_FIELDS[kind]]
        return all(jnp.ndim(v) == 0 and math.isfinite(v) for v in values)
    return all(check_tree(child) for child in kids)


def check_trace(trace: Trace) -> list[str]:
    """
    Check the internal consistency of a model trace.

    Parameters
    ----------
    trace
        The trace to check.

    Returns
    -------
    A list of descriptions of the problems found, empty if none.
    """
    errors = []
    max_branch = trace.grammar.max_branch
    tree = trace.covariance_fn

    if not check_tree(tree):
        errors.append('invalid covariance function tree')
        return errors

    # the recorded choices are exactly those of the nodes in the tree
    choices = trace.choices
    expected = {NOISE, YS}
    for node_id in node_ids(tree, max_branch=max_branch):
        kind = kind_of(subtree_at(tree, node_id, max_branch=max_branch))
        type_addr = tree_address(node_id, Role.production, 'type')
        expected.add(type_addr)
        expected.update(
            tree_address(node_id, Role.aggregation, name) for name in _LEAF_FIELDS[kind]
        )
        if type_addr in choices and int(choices.value(type_addr)) != kind:
            errors.append(
                f'node {node_id} has kind {kind.name} but a different recorded type'
            )
    actual = set(choices)
    for addr in sorted(map(str, actual - expected)):
        errors.append(f'stray choice at {addr}')
    for addr in sorted(map(str, expected - actual)):
        errors.append(f'missing choice at {addr}')

    if set(trace.tree.w) != set(node_ids(tree, max_branch=max_branch)):
        errors.append('the cached node outputs do not match the tree')

    noise = jnp.asarray(trace.noise)
    if noise < jnp.asarray(trace.grammar.noise_floor, noise.dtype):
        errors.append('noise below floor')

    n = trace.xs.size
    if trace.cov_matrix.shape != (n, n):
        errors.append(
            f'covariance matrix has shape {trace.cov_matrix.shape}, expected {(n, n)}'
        )

    return errors
