# gpstruct/tests/test_recurse.py
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

"""Test `gpstruct.recurse` with a toy recursion and with the model kernels."""

from functools import partial

import jax
import pytest
from jax import numpy as jnp
from jax.random import clone
from numpy.testing import assert_allclose, assert_array_equal

from gpstruct.choices import Address, Role, Site, tree_address
from gpstruct.distributions import Categorical
from gpstruct.grammar import Constant, Grammar, NodeKind
from gpstruct.grove import ROOT, is_descendant
from gpstruct.kernels import eval_cov_mat
from gpstruct.model import (
    CovFnAndMatrix,
    NodeTypeAndXs,
    aggregation_kernel,
    covariance_prior,
    tree_constraints,
)
from gpstruct.recurse import Diff, Recurse
from tests.util import SAMPLE_TREES, assert_same_choices, assert_same_tree, xs_grid

MAX_DEPTH = 4


def count_production(key, site, depth):
    """Branch in two with probability 1/2, up to a maximum depth."""
    probs = jnp.array([0.5, 0.5]) if depth < MAX_DEPTH else jnp.array([1.0, 0.0])
    branch = int(site.sample(key, Categorical(probs), 'branch'))
    return depth, [depth + 1] * (2 * branch)


def count_aggregation(key, site, depth, ws):  # noqa: ARG001
    """Count the nodes."""
    return 1 + sum(ws)


@pytest.fixture
def counter() -> Recurse:
    """Recursion that counts the nodes of a random binary tree."""
    return Recurse(count_production, count_aggregation, max_branch=2)


def branch_addr(node_id: int) -> Address:
    return tree_address(node_id, Role.production, 'branch')


class TestGeneric:
    """Test the recursion on a toy problem."""

    def test_output(self, counter, keys):
        """Check the output and the trace are consistent."""
        w, trace = counter.expand(keys.pop(), ROOT, 0)
        assert w == trace.retval == len(trace.v) == len(trace.w)
        assert trace.root == ROOT
        assert {addr.node_id for addr in trace.choices} == set(trace.v)
        for node_id in trace.v:
            branch = trace.choices.value(branch_addr(node_id))
            has_children = 2 * node_id in trace.v
            assert bool(branch) == has_children
            assert (2 * node_id + 1 in trace.v) == has_children

    def test_deterministic(self, counter, keys):
        """Check the same key gives the same expansion."""
        key = keys.pop()
        _, trace1 = counter.expand(clone(key), ROOT, 0)
        _, trace2 = counter.expand(key, ROOT, 0)
        assert_same_choices(trace1.choices, trace2.choices)
        assert trace1.w == trace2.w

    def test_constraints(self, counter, keys):
        """Check constrained choices are used in place of sampling."""
        constraints = {branch_addr(1): 1, branch_addr(2): 0, branch_addr(3): 0}
        w, trace = counter.expand(keys.pop(), ROOT, 0, constraints=constraints)
        assert w == 3
        assert set(trace.v) == {1, 2, 3}
        assert_allclose(trace.choices.total_logp(), 3 * jnp.log(0.5), rtol=1e-12)

    def test_unchanged_reuse(self, counter, keys):
        """Check an unchanged expansion returns the previous one without sampling."""
        w, trace = counter.expand(keys.pop(), ROOT, 0)
        w2, trace2 = counter.expand(keys.pop(), ROOT, 0, trace, Diff.unchanged)
        assert w2 == w
        assert_same_choices(trace2.choices, trace.choices)
        assert trace2.v == trace.v

    def test_changed_replay(self, counter, keys):
        """Check a changed expansion replays the previous choices."""
        _, trace = counter.expand(keys.pop(), ROOT, 0)
        _, trace2 = counter.expand(keys.pop(), ROOT, 0, trace, Diff.changed)
        assert_same_choices(trace2.choices, trace.choices)
        assert trace2.w == trace.w

    def test_resample(self, counter, keys):
        """Check only the resampled subtree changes, and the path is recomputed."""
        constraints = {branch_addr(1): 1}
        _, trace = counter.expand(keys.pop(), ROOT, 0, constraints=constraints)

        # with some keys the new subtree is the same as the old one, this is
        # fine since the checks below hold regardless
        w, new = counter.expand(keys.pop(), ROOT, 0, trace, Diff.unchanged, resample=2)

        def outside(addr):
            return not is_descendant(addr.node_id, 2, 2)

        assert_same_choices(
            new.choices.restrict(outside), trace.choices.restrict(outside)
        )
        assert new.w[3] == trace.w[3]
        assert w == new.w[1] == 1 + new.w[2] + new.w[3]
        assert w == len(new.v)

        # no stray addresses from the old subtree
        assert {addr.node_id for addr in new.choices} == set(new.v)

    def test_resample_root(self, counter, keys):
        """Check resampling from the root discards all the previous choices."""
        _, trace = counter.expand(keys.pop(), ROOT, 0)
        key = keys.pop()
        _, fresh = counter.expand(clone(key), ROOT, 0)
        _, new = counter.expand(key, ROOT, 0, trace, Diff.unchanged, resample=ROOT)
        assert_same_choices(new.choices, fresh.choices)

    def test_subtrace(self, counter, keys):
        """Check restricting a trace to a subtree."""
        constraints = {branch_addr(1): 1}
        _, trace = counter.expand(keys.pop(), ROOT, 0, constraints=constraints)
        sub = trace.subtrace(3, 2)
        assert sub.root == 3
        assert sub.retval == trace.w[3]
        assert all(is_descendant(i, 3, 2) for i in sub.v)
        assert len(sub.choices) == len(sub.v) == sub.retval

    def test_too_many_children(self, keys):
        """Check a production kernel can not exceed the maximum branching."""

        def production(key, site, u):  # noqa: ARG001
            return u, [u, u, u]

        recurse = Recurse(production, count_aggregation, max_branch=2)
        with pytest.raises(AssertionError):
            recurse.expand(keys.pop(), ROOT, 0)


class TestModelKernels:
    """Test the recursion with the covariance function kernels."""

    @pytest.mark.parametrize('node', SAMPLE_TREES)
    def test_constrained_tree(self, node, keys):
        """Check the tree and the covariance matrix of a constrained expansion."""
        grammar = Grammar()
        xs = jnp.asarray(xs_grid(6))
        constraints = tree_constraints(node, grammar=grammar)
        out, trace = covariance_prior(grammar).expand(
            keys.pop(), ROOT, xs, constraints=constraints
        )
        assert set(trace.choices) == set(constraints)
        assert jax.tree.structure(out.node) == jax.tree.structure(node)
        jax.tree.map(partial(assert_allclose, rtol=1e-12), out.node, node)
        assert_allclose(out.cov_matrix, eval_cov_mat(node, xs), rtol=1e-12)

    def test_new_inputs(self, keys):
        """Check a changed input recomputes the matrices with the same tree."""
        grammar = Grammar()
        prior = covariance_prior(grammar)
        xs = jnp.asarray(xs_grid(4))
        out, trace = prior.expand(keys.pop(), ROOT, xs)

        xs2 = jnp.asarray(xs_grid(7))
        out2, trace2 = prior.expand(keys.pop(), ROOT, xs2, trace, Diff.changed)
        assert_same_tree(out2.node, out.node)
        assert set(trace2.choices) == set(trace.choices)
        assert out2.cov_matrix.shape == (7, 7)
        assert_allclose(out2.cov_matrix, eval_cov_mat(out.node, xs2), rtol=1e-12)

    def test_leaf_with_children(self, keys):
        """Check a leaf with children is rejected."""
        xs = jnp.asarray(xs_grid(3))
        child = CovFnAndMatrix(Constant(0.5), jnp.ones((3, 3)))
        agg = partial(aggregation_kernel, Grammar())
        site = Site(((ROOT, Role.aggregation),))
        with pytest.raises(AssertionError):
            agg(keys.pop(), site, NodeTypeAndXs(NodeKind.constant, xs), [child])

    def test_operator_child_count(self, keys):
        """Check a combinator with one child is rejected."""
        xs = jnp.asarray(xs_grid(3))
        child = CovFnAndMatrix(Constant(0.5), jnp.ones((3, 3)))
        agg = partial(aggregation_kernel, Grammar())
        site = Site(((ROOT, Role.aggregation),))
        with pytest.raises(AssertionError):
            agg(keys.pop(), site, NodeTypeAndXs(NodeKind.plus, xs), [child])

    def test_shape_mismatch(self, keys):
        """Check combining matrices of different shape is rejected."""
        xs = jnp.asarray(xs_grid(3))
        left = CovFnAndMatrix(Constant(0.5), jnp.ones((3, 3)))
        right = CovFnAndMatrix(Constant(0.5), jnp.ones((4, 4)))
        agg = partial(aggregation_kernel, Grammar())
        site = Site(((ROOT, Role.aggregation),))
        with pytest.raises(AssertionError):
            agg(keys.pop(), site, NodeTypeAndXs(NodeKind.times, xs), [left, right])

    def test_type_choice(self, keys):
        """Check the node type choice is recorded with the grammar probability."""
        grammar = Grammar()
        xs = jnp.asarray(xs_grid(3))
        _, trace = covariance_prior(grammar).expand(keys.pop(), ROOT, xs)
        addr = tree_address(ROOT, Role.production, 'type')
        kind = int(trace.choices.value(addr))
        assert_array_equal(
            trace.choices.logp(addr), jnp.log(jnp.asarray(grammar.node_probs)[kind])
        )
