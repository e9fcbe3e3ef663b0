# gpstruct/src/gpstruct/recurse.py
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

"""Production/aggregation recursion over trees with incremental re-execution.

A `Recurse` object builds a tree-shaped computation from two kernels:

production
    Called top-down at each node with the input `u` passed by the parent.
    Returns a value `v` for the aggregation step of the same node and the list
    of inputs of the children. The length of the list is the number of
    children of the node.
aggregation
    Called bottom-up at each node with `v` and the outputs `w` of the
    children. Returns the output `w` of the node.

Both kernels make their random choices through a `gpstruct.choices.Site`,
which records them at addresses ``(node_id, role) / field``. The nodes are
numbered as described in `gpstruct.grove`.

Given the trace of a previous expansion, `Recurse.expand` can redo only the
part of the computation that may have changed: a node whose input did not
change and that is not above the regenerated subtree returns its previous
output without running the kernels.
"""

from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from equinox import Module, field
from jaxtyping import Array, ArrayLike, Key

from gpstruct.choices import Address, ChoiceMap, Role, Site
from gpstruct.grove import get_child, is_descendant
from gpstruct.jaxext import split


class Diff(Enum):
    """Whether a value may differ from the one in the previous trace."""

    unchanged = 'unchanged'
    changed = 'changed'


class RecurseTrace(Module):
    """
    Record of an expansion.

    Parameters
    ----------
    root
        The number of the root node of the expansion.
    choices
        The random choices made in all the nodes of the expanded subtree.
    v
        The output of the production kernel at each node.
    w
        The output of the aggregation kernel at each node.
    """

    root: int = field(static=True)
    choices: ChoiceMap
    v: dict[int, Any]
    w: dict[int, Any]

    @property
    def retval(self) -> Any:
        """The output of the aggregation kernel at the root."""
        return self.w[self.root]

    def subtrace(self, node_id: int, max_branch: int) -> 'RecurseTrace':
        """Restrict the trace to the subtree rooted at `node_id`."""

        def below(i):
            return is_descendant(i, node_id, max_branch)

        return RecurseTrace(
            root=node_id,
            choices=self.choices.subtree(node_id, max_branch),
            v={i: v for i, v in self.v.items() if below(i)},
            w={i: w for i, w in self.w.items() if below(i)},
        )


ProductionKernel = Callable[[Key[Array, ''], Site, Any], tuple[Any, list[Any]]]
AggregationKernel = Callable[[Key[Array, ''], Site, Any, list[Any]], Any]


class Recurse(Module):
    """
    Generic production/aggregation recursion.

    Parameters
    ----------
    production
        The production kernel ``(key, site, u) -> (v, us)``.
    aggregation
        The aggregation kernel ``(key, site, v, ws) -> w``.
    max_branch
        The maximum number of children of a node.
    """

    production: ProductionKernel = field(static=True)
    aggregation: AggregationKernel = field(static=True)
    max_branch: int = field(static=True)

    def expand(
        self,
        key: Key[Array, ''],
        node_id: int,
        u: Any,
        prev: RecurseTrace | None = None,
        diff: Diff = Diff.changed,
        *,
        resample: int | None = None,
        constraints: Mapping[Address, ArrayLike] | None = None,
    ) -> tuple[Any, RecurseTrace]:
        """
        Expand the subtree rooted at a node.

        Parameters
        ----------
        key
            A jax random key.
        node_id
            The number of the node to expand.
        u
            The input of the node.
        prev
            The trace of a previous expansion of the same node, or `None` to
            sample everything from scratch.
        diff
            Whether `u` may differ from the input in `prev`.
        resample
            The number of a node whose subtree is sampled afresh, ignoring the
            choices in `prev`. The nodes above it replay their previous choices
            and recompute their outputs, the other nodes are reused as they
            are if `diff` is `Diff.unchanged`.
        constraints
            Values to impose on some addresses instead of sampling them.

        Returns
        -------
        w : Any
            The output of the aggregation kernel at `node_id`.
        trace : RecurseTrace
            The trace of the new expansion. It contains the choices of the
            subtree rooted at `node_id`, and nothing else: the choices of a
            regenerated subtree that are not made again are dropped.
        """
        return self._expand(key, node_id, u, prev, diff, resample, constraints)

    def _expand(self, key, node_id, u, prev, diff, resample, constraints):
        if prev is not None and (node_id == resample or node_id not in prev.v):
            prev = None

        above_resample = resample is not None and is_descendant(
            resample, node_id, self.max_branch
        )
        if prev is not None and diff is Diff.unchanged and not above_resample:
            return prev.w[node_id], prev.subtrace(node_id, self.max_branch)

        prev_choices = None if prev is None else prev.choices
        keys = split(key, 3)

        # production, top-down
        site = Site(((node_id, Role.production),), prev_choices, constraints)
        v, us = self.production(keys.pop(), site, u)
        assert len(us) <= self.max_branch
        choices = ChoiceMap(site.choices)

        # children
        ws = []
        v_by_node = {node_id: v}
        w_by_node = {}
        if us:
            child_keys = split(keys.pop(), len(us))
            for k, child_u in enumerate(us, start=1):
                child_id = get_child(node_id, k, self.max_branch)
                child_w, child_trace = self._expand(
                    child_keys.pop(),
                    child_id,
                    child_u,
                    prev,
                    diff,
                    resample,
                    constraints,
                )
                ws.append(child_w)
                choices = choices.merge(child_trace.choices)
                v_by_node.update(child_trace.v)
                w_by_node.update(child_trace.w)

        # aggregation, bottom-up
        site = Site(((node_id, Role.aggregation),), prev_choices, constraints)
        w = self.aggregation(keys.pop(), site, v, ws)
        choices = choices.merge(site.choices)
        w_by_node[node_id] = w

        trace = RecurseTrace(root=node_id, choices=choices, v=v_by_node, w=w_by_node)
        return w, trace

