# gpstruct/tests/test_mcmcloop.py
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

"""Test `gpstruct.mcmcloop`."""

import re

import numpy as np
import pytest
from jax import numpy as jnp
from jax.random import clone
from numpy.testing import assert_array_equal

import gpstruct
from gpstruct.debug import check_trace, check_tree
from gpstruct.grammar import Node, children, kind_of, num_children
from gpstruct.grove import tree_size
from gpstruct.jaxext import split
from gpstruct.mcmcloop import (
    MainTrace,
    init,
    make_default_callback,
    print_callback,
    run,
    run_mcmc,
)
from tests.util import assert_same_tree


@pytest.fixture
def data():
    """Three points with strongly correlated observations."""
    xs = np.array([0.0, 1.0, 2.0])
    cov = 0.5 * np.ones((3, 3)) + 0.1 * np.eye(3)
    rng = np.random.default_rng(20260101)
    ys = rng.multivariate_normal(np.zeros(3), cov)
    return xs, ys


def assert_valid_tree(node: Node):
    """Check every node has the number of children required by its kind."""
    assert check_tree(node)
    assert len(children(node)) == num_children(kind_of(node))
    for child in children(node):
        assert_valid_tree(child)


class TestRun:
    """Test the top-level sampler."""

    def test_end_to_end(self, data, keys):
        """Check the observer sees a valid state at every iteration."""
        xs, ys = data
        seen = []

        def observer(covariance_fn, noise):
            assert_valid_tree(covariance_fn)
            assert noise > 0.01
            seen.append(covariance_fn)

        covariance_fn, noise = run(keys.pop(), xs, ys, 50, observer)
        assert len(seen) == 50
        assert_valid_tree(covariance_fn)
        assert noise > 0.01

    def test_inference_alias(self):
        """Check the alias of `run`."""
        assert gpstruct.inference is run

    def test_deterministic(self, data, keys):
        """Check the same key gives the same chain."""
        xs, ys = data
        key = keys.pop()
        fn1, noise1 = run(clone(key), xs, ys, 10)
        fn2, noise2 = run(key, xs, ys, 10)
        assert_same_tree(fn1, fn2)
        assert_array_equal(noise1, noise2)

    def test_zero_iterations(self, data, keys):
        """Check that no iterations return the initial state."""
        xs, ys = data
        key = keys.pop()
        calls = []
        fn, noise = run(clone(key), xs, ys, 0, lambda f, n: calls.append(f))
        assert calls == []

        # run uses the first half of the key for the initial trace
        trace = init(split(key).pop(), xs, ys)
        assert_same_tree(fn, trace.covariance_fn)
        assert_array_equal(noise, trace.noise)

    def test_negative_iterations(self, data, keys):
        """Check a negative number of iterations is rejected."""
        xs, ys = data
        with pytest.raises(ValueError, match='non-negative'):
            run(keys.pop(), xs, ys, -1)

    def test_bad_data(self, keys):
        """Check inconsistent data is rejected."""
        with pytest.raises(ValueError, match='same length'):
            run(keys.pop(), [0.0, 1.0], [0.0, 1.0, 2.0], 1)
        with pytest.raises(ValueError, match='1-dimensional'):
            run(keys.pop(), [[0.0, 1.0]], [[0.0, 1.0]], 1)


class TestRunMcmc:
    """Test the lower level loop."""

    def test_main_trace(self, data, keys):
        """Check the per-iteration record."""
        xs, ys = data
        trace = init(keys.pop(), xs, ys)
        final, main = run_mcmc(keys.pop(), trace, 15)
        assert isinstance(main, MainTrace)
        for field in (
            main.noise,
            main.tree_size,
            main.log_likelihood,
            main.subtree_acc,
            main.noise_acc,
        ):
            assert field.shape == (15,)
        assert main.subtree_acc.dtype == bool
        assert jnp.all(main.noise > 0.01)
        assert jnp.all(main.tree_size >= 1)
        assert main.tree_size[-1] == tree_size(final.covariance_fn)
        assert main.noise[-1] == final.noise
        assert check_trace(final) == []

    def test_empty_main_trace(self, data, keys):
        """Check zero iterations give an empty record and the same trace."""
        xs, ys = data
        trace = init(keys.pop(), xs, ys)
        final, main = run_mcmc(keys.pop(), trace, 0)
        assert final is trace
        assert main.noise.shape == (0,)

    def test_callback_state(self, data, keys):
        """Check the callback arguments and the threading of its state."""
        xs, ys = data
        trace = init(keys.pop(), xs, ys)
        calls = []

        def callback(
            *, i_total, n_iters, subtree_acc_count, noise_acc_count, callback_state, **_
        ):
            assert 0 <= subtree_acc_count <= i_total + 1
            assert 0 <= noise_acc_count <= i_total + 1
            calls.append((i_total, n_iters, callback_state))
            return callback_state + 1

        run_mcmc(keys.pop(), trace, 4, callback=callback, callback_state=10)
        assert calls == [(0, 4, 10), (1, 4, 11), (2, 4, 12), (3, 4, 13)]


class TestPrintCallback:
    """Test the progress report."""

    def test_output(self, data, keys, capsys):
        """Check the dots and the report lines."""
        xs, ys = data
        trace = init(keys.pop(), xs, ys)
        run_mcmc(
            keys.pop(), trace, 6, **make_default_callback(dot_every=1, report_every=3)
        )
        out = capsys.readouterr().out
        lines = out.splitlines()
        assert lines[0] == '...'
        pattern = r'It 3/6 subtree A=\d+%, noise A=\d+%, size=\d+, noise=\S+, loglik=\S+'
        assert re.fullmatch(pattern, lines[1])
        assert lines[2] == '...'
        assert lines[3].startswith('It 6/6 ')

    def test_no_dots(self, data, keys, capsys):
        """Check the report alone."""
        xs, ys = data
        trace = init(keys.pop(), xs, ys)
        kw = make_default_callback(dot_every=None, report_every=2)
        assert kw['callback'] is print_callback
        run_mcmc(keys.pop(), trace, 4, **kw)
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 2
        assert all(line.startswith('It ') for line in lines)
