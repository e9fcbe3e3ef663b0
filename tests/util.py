# gpstruct/tests/util.py
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

"""Functions intended to be shared across the test suite."""

from collections.abc import Mapping

import jax
import numpy as np
from numpy.testing import assert_array_equal

from gpstruct.choices import Address, Choice
from gpstruct.grammar import (
    Constant,
    Linear,
    Node,
    Periodic,
    Plus,
    SquaredExponential,
    Times,
)
from gpstruct.model import Trace


def assert_same_choices(
    actual: Mapping[Address, Choice], desired: Mapping[Address, Choice]
):
    """Check that two choice maps have the same addresses, values and densities."""
    assert set(actual) == set(desired)
    for addr in desired:
        assert_array_equal(actual[addr].value, desired[addr].value, strict=True)
        assert_array_equal(actual[addr].logp, desired[addr].logp, strict=True)


def assert_same_tree(actual: Node, desired: Node):
    """Check that two covariance functions are identical, parameters included."""
    assert jax.tree.structure(actual) == jax.tree.structure(desired)
    jax.tree.map(assert_array_equal, actual, desired)


def assert_same_trace(actual: Trace, desired: Trace):
    """Check that two traces are identical in every address and cached value."""
    assert_same_choices(actual.choices, desired.choices)
    assert_same_tree(actual.covariance_fn, desired.covariance_fn)
    assert set(actual.tree.w) == set(desired.tree.w)
    for node_id, w in desired.tree.w.items():
        assert_array_equal(actual.tree.w[node_id].cov_matrix, w.cov_matrix, strict=True)
    assert_array_equal(actual.noise, desired.noise, strict=True)
    assert_array_equal(actual.log_likelihood, desired.log_likelihood, strict=True)


def tree_of_size(size: int) -> Node:
    """Make a covariance function with `size` nodes, `size` must be odd."""
    assert size % 2 == 1
    if size == 1:
        return Constant(0.5)
    left = (size - 1) // 2
    if left % 2 == 0:
        left -= 1
    right = size - 1 - left
    return Plus(tree_of_size(left), tree_of_size(right))


SAMPLE_TREES = [
    Constant(0.3),
    Linear(0.2),
    SquaredExponential(0.5),
    Periodic(0.4, 0.7),
    Plus(Constant(0.3), Linear(0.6)),
    Times(SquaredExponential(0.2), Periodic(0.9, 0.3)),
    Plus(Times(Constant(0.1), Linear(0.4)), Plus(Periodic(0.2, 0.8), Constant(0.9))),
]


def xs_grid(n: int = 5) -> np.ndarray:
    """Evenly spaced input points in [0, 1]."""
    return np.linspace(0, 1, n)
