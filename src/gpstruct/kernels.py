# gpstruct/src/gpstruct/kernels.py
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

"""Evaluation of covariance functions on input points."""

import jax
from jax import numpy as jnp
from jaxtyping import Array, Float, Real

from gpstruct.grammar import (
    Constant,
    Linear,
    Node,
    Periodic,
    Plus,
    SquaredExponential,
    Times,
)


def eval_cov(
    node: Node, x1: Real[Array, '*shape1'], x2: Real[Array, '*shape2']
) -> Float[Array, '*shape']:
    """
    Evaluate a covariance function, broadcasting the two arguments.

    Parameters
    ----------
    node
        The covariance function.
    x1
    x2
        The input points. Their shapes must be broadcastable.

    Returns
    -------
    The covariance between the points, with the broadcasted shape.
    """
    if isinstance(node, Constant):
        shape = jnp.broadcast_shapes(jnp.shape(x1), jnp.shape(x2))
        param = jnp.asarray(node.param, jnp.result_type(x1, float))
        return jnp.broadcast_to(param, shape)

    elif isinstance(node, Linear):
        return (x1 - node.param) * (x2 - node.param)

    elif isinstance(node, SquaredExponential):
        diff = x1 - x2
        return jnp.exp(-0.5 * diff * diff / node.length_scale)

    elif isinstance(node, Periodic):
        freq = 2 * jnp.pi / node.period
        return jnp.exp((-1 / node.scale) * jnp.square(jnp.sin(freq * jnp.abs(x1 - x2))))

    elif isinstance(node, Plus):
        return eval_cov(node.left, x1, x2) + eval_cov(node.right, x1, x2)

    elif isinstance(node, Times):
        return eval_cov(node.left, x1, x2) * eval_cov(node.right, x1, x2)

    else:
        msg = f'unknown node type {type(node).__name__}'
        raise TypeError(msg)


@jax.jit
def eval_cov_mat(node: Node, xs: Real[Array, ' n']) -> Float[Array, 'n n']:
    """Compute the covariance matrix of a set of points."""
    return eval_cov(node, xs[:, None], xs[None, :])


@jax.jit
def eval_cross_cov_mat(
    node: Node, xs1: Real[Array, ' n'], xs2: Real[Array, ' m']
) -> Float[Array, 'n m']:
    """Compute the covariance matrix between two sets of points."""
    return eval_cov(node, xs1[:, None], xs2[None, :])
