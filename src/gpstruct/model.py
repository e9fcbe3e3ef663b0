# gpstruct/src/gpstruct/model.py
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

"""Generative model of covariance functions, noise and observations.

The model samples a covariance function tree with the `Recurse` combinator
(`covariance_prior`), then the noise variance from a gamma prior, then the
observations from a zero-mean multivariate normal with the covariance matrix
of the tree plus the noise on the diagonal.

The random choices are recorded at these addresses:

``(i, production) / type``
    The kind of node `i`, see `gpstruct.grammar.NodeKind`.
``(i, aggregation) / param | length_scale | scale | period``
    The parameters of the base kernel at node `i`, before adding the floor.
``noise``
    The gamma draw of the noise variance, before adding the floor.
``ys``
    The observations.
"""

from collections.abc import Mapping
from functools import partial

from equinox import Module, field
from jax import numpy as jnp
from jaxtyping import Array, ArrayLike, Float, Key

from gpstruct.choices import Address, Choice, ChoiceMap, Role, Site, tree_address
from gpstruct.distributions import Categorical, Gamma, MvNormal, Uniform
from gpstruct.grammar import (
    Constant,
    Grammar,
    Linear,
    Node,
    NodeKind,
    Periodic,
    Plus,
    SquaredExponential,
    Times,
    children,
    kind_of,
    num_children,
)
from gpstruct.grove import ROOT, get_child
from gpstruct.jaxext import finite_or_minus_inf, split
from gpstruct.kernels import eval_cov_mat
from gpstruct.recurse import Diff, Recurse, RecurseTrace

NOISE = Address((), 'noise')
YS = Address((), 'ys')


class NodeTypeAndXs(Module):
    """Output of the production kernel, passed to the aggregation kernel."""

    kind: NodeKind = field(static=True)
    xs: Float[Array, ' n']


class CovFnAndMatrix(Module):
    """Output of the aggregation kernel: a subtree and its covariance matrix."""

    node: Node
    cov_matrix: Float[Array, 'n n']


def production_kernel(
    grammar: Grammar, key: Key[Array, ''], site: Site, xs: Float[Array, ' n']
) -> tuple[NodeTypeAndXs, list[Float[Array, ' n']]]:
    """Sample the kind of a node and pass the inputs on to its children."""
    dist = Categorical(jnp.asarray(grammar.node_probs))
    kind = NodeKind(int(site.sample(key, dist, 'type')))
    # the inputs are never split, every child sees all the points
    return NodeTypeAndXs(kind, xs), [xs] * num_children(kind)


def aggregation_kernel(
    grammar: Grammar,
    key: Key[Array, ''],
    site: Site,
    v: NodeTypeAndXs,
    child_outputs: list[CovFnAndMatrix],
) -> CovFnAndMatrix:
    """Sample the parameters of a node, or combine its children."""
    kind = v.kind
    xs = v.xs
    keys = split(key, 2)
    unit = Uniform(0.0, 1.0)
    floor = grammar.param_floor

    if kind == NodeKind.constant:
        assert len(child_outputs) == 0
        node = Constant(site.sample(keys.pop(), unit, 'param'))
        cov_matrix = eval_cov_mat(node, xs)

    elif kind == NodeKind.linear:
        assert len(child_outputs) == 0
        node = Linear(site.sample(keys.pop(), unit, 'param'))
        cov_matrix = eval_cov_mat(node, xs)

    elif kind == NodeKind.squared_exp:
        assert len(child_outputs) == 0
        length_scale = floor + site.sample(keys.pop(), unit, 'length_scale')
        node = SquaredExponential(length_scale)
        cov_matrix = eval_cov_mat(node, xs)

    elif kind == NodeKind.periodic:
        assert len(child_outputs) == 0
        scale = floor + site.sample(keys.pop(), unit, 'scale')
        period = floor + site.sample(keys.pop(), unit, 'period')
        node = Periodic(scale, period)
        cov_matrix = eval_cov_mat(node, xs)

    elif kind == NodeKind.plus:
        assert len(child_outputs) == 2
        left, right = child_outputs
        assert left.cov_matrix.shape == right.cov_matrix.shape
        node = Plus(left.node, right.node)
        cov_matrix = left.cov_matrix + right.cov_matrix

    elif kind == NodeKind.times:
        assert len(child_outputs) == 2
        left, right = child_outputs
        assert left.cov_matrix.shape == right.cov_matrix.shape
        node = Times(left.node, right.node)
        cov_matrix = left.cov_matrix * right.cov_matrix

    else:
        msg = f'unknown node type {kind}'
        raise ValueError(msg)

    return CovFnAndMatrix(node, cov_matrix)


def covariance_prior(grammar: Grammar) -> Recurse:
    """Return the recursive prior over covariance functions."""
    return Recurse(
        production=partial(production_kernel, grammar),
        aggregation=partial(aggregation_kernel, grammar),
        max_branch=grammar.max_branch,
    )


def noise_prior(grammar: Grammar) -> Gamma:
    """Return the prior of the noise variance, without the floor."""
    return Gamma(grammar.noise_shape, grammar.noise_rate)


class Trace(Module):
    """
    Execution trace of the model.

    Parameters
    ----------
    xs
        The input points.
    ys
        The observations.
    tree
        The trace of the covariance function tree.
    top
        The choices made outside of the tree, at `NOISE` and `YS`.
    grammar
        The configuration of the prior.
    """

    xs: Float[Array, ' n']
    ys: Float[Array, ' n']
    tree: RecurseTrace
    top: ChoiceMap
    grammar: Grammar = field(static=True)

    @property
    def choices(self) -> ChoiceMap:
        """All the random choices of the trace."""
        return self.tree.choices.merge(self.top)

    @property
    def covariance_fn(self) -> Node:
        """The covariance function tree."""
        return self.tree.retval.node

    @property
    def cov_matrix(self) -> Float[Array, 'n n']:
        """The covariance matrix of the tree, without noise."""
        return self.tree.retval.cov_matrix

    @property
    def noise(self) -> Float[Array, '']:
        """The noise variance."""
        return self.top.value(NOISE) + self.grammar.noise_floor

    @property
    def log_likelihood(self) -> Float[Array, '']:
        """The log density of the observations, `-inf` if not computable."""
        return finite_or_minus_inf(self.top.logp(YS))

    def log_prob(self) -> Float[Array, '']:
        """The joint log density of all the choices, `-inf` if not computable."""
        log_prob = self.tree.choices.total_logp() + self.top.total_logp()
        return finite_or_minus_inf(log_prob)


def observation_dist(
    cov_matrix: Float[Array, 'n n'], noise: Float[ArrayLike, '']
) -> MvNormal:
    """Return the distribution of the observations."""
    n, _ = cov_matrix.shape
    return MvNormal(jnp.zeros(n, cov_matrix.dtype), cov_matrix + noise * jnp.eye(n))


def _assemble(
    xs: Float[Array, ' n'],
    ys: Float[Array, ' n'],
    tree: RecurseTrace,
    noise_choice: Choice,
    grammar: Grammar,
) -> Trace:
    """Make a trace, recomputing the density of the observations."""
    noise = noise_choice.value + grammar.noise_floor
    dist = observation_dist(tree.retval.cov_matrix, noise)
    top = ChoiceMap({NOISE: noise_choice, YS: Choice(ys, dist.logpdf(ys))})
    return Trace(xs=xs, ys=ys, tree=tree, top=top, grammar=grammar)


def _check_xs(xs: ArrayLike) -> Float[Array, ' n']:
    xs = jnp.asarray(xs)
    if xs.ndim != 1:
        msg = f'xs must be 1-dimensional, got shape {xs.shape}'
        raise ValueError(msg)
    return jnp.asarray(xs, jnp.result_type(xs, float))


def generate(
    key: Key[Array, ''],
    xs: Float[ArrayLike, ' n'],
    constraints: Mapping[Address, ArrayLike] | None = None,
    *,
    grammar: Grammar = Grammar(),
) -> Trace:
    """
    Run the model.

    Parameters
    ----------
    key
        A jax random key.
    xs
        The input points.
    constraints
        Values to fix at some addresses. Usually this contains the
        observations at `YS`. The value at `NOISE` is the variance before
        adding the floor.
    grammar
        The configuration of the prior.

    Returns
    -------
    A trace of the model.

    Raises
    ------
    ValueError
        If the constrained observations do not match the input points.
    """
    xs = _check_xs(xs)
    if constraints is not None and YS in constraints:
        ys = jnp.asarray(constraints[YS])
        if ys.shape != xs.shape:
            msg = f'ys must have shape {xs.shape}, got {ys.shape}'
            raise ValueError(msg)

    keys = split(key, 3)
    _, tree = covariance_prior(grammar).expand(
        keys.pop(), ROOT, xs, constraints=constraints
    )
    site = Site((), constraints=constraints)
    raw_noise = site.sample(keys.pop(), noise_prior(grammar), 'noise')
    dist = observation_dist(tree.retval.cov_matrix, raw_noise + grammar.noise_floor)
    ys = site.sample(keys.pop(), dist, 'ys')
    return _assemble(xs, jnp.asarray(ys, xs.dtype), tree, site.choices[NOISE], grammar)


def regenerate_subtree(
    key: Key[Array, ''], trace: Trace, root: int
) -> tuple[Trace, ChoiceMap]:
    """
    Sample again a subtree of the covariance function from the prior.

    Parameters
    ----------
    key
        A jax random key.
    trace
        The current trace. It is not modified.
    root
        The number of the root of the subtree.

    Returns
    -------
    new_trace : Trace
        The new trace. The choices outside of the subtree are the same.
    discard : ChoiceMap
        The choices of the old subtree.
    """
    max_branch = trace.grammar.max_branch
    _, tree = covariance_prior(trace.grammar).expand(
        key, ROOT, trace.xs, trace.tree, Diff.unchanged, resample=root
    )
    discard = trace.tree.choices.subtree(root, max_branch)
    new_trace = _assemble(trace.xs, trace.ys, tree, trace.top[NOISE], trace.grammar)
    return new_trace, discard


def regenerate_noise(key: Key[Array, ''], trace: Trace) -> tuple[Trace, ChoiceMap]:
    """
    Sample again the noise variance from the prior.

    The covariance function tree is reused as it is.

    Returns
    -------
    new_trace : Trace
        The new trace.
    discard : ChoiceMap
        The old choice at `NOISE`.
    """
    site = Site(())
    site.sample(key, noise_prior(trace.grammar), 'noise')
    new_trace = _assemble(
        trace.xs, trace.ys, trace.tree, site.choices[NOISE], trace.grammar
    )
    return new_trace, ChoiceMap({NOISE: trace.top[NOISE]})


def tree_constraints(
    node: Node, *, grammar: Grammar = Grammar(), root: int = ROOT
) -> dict[Address, ArrayLike]:
    """
    Compute the constraints that make `generate` produce a given tree.

    Parameters
    ----------
    node
        The covariance function.
    grammar
        The configuration of the prior. Its floor is subtracted from the
        parameters that have one.
    root
        The number of the root of `node`.

    Returns
    -------
    A dictionary from the tree addresses to the values of the choices.
    """
    kind = kind_of(node)
    floor = grammar.param_floor
    constraints = {tree_address(root, Role.production, 'type'): int(kind)}

    def param(name, value):
        constraints[tree_address(root, Role.aggregation, name)] = value

    if isinstance(node, Constant | Linear):
        param('param', node.param)
    elif isinstance(node, SquaredExponential):
        param('length_scale', node.length_scale - floor)
    elif isinstance(node, Periodic):
        param('scale', node.scale - floor)
        param('period', node.period - floor)
    else:
        for k, child in enumerate(children(node), start=1):
            child_id = get_child(root, k, grammar.max_branch)
            constraints.update(tree_constraints(child, grammar=grammar, root=child_id))
    return constraints
