# gpstruct/src/gpstruct/predict.py
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

"""Gaussian process predictions given a covariance function and noise."""

import jax
from jax import numpy as jnp
from jax.scipy.linalg import solve_triangular
from jaxtyping import Array, ArrayLike, Float, Key

from gpstruct.distributions import MvNormal
from gpstruct.grammar import Node
from gpstruct.kernels import eval_cov_mat


@jax.jit
def compute_cov_matrix(
    covariance_fn: Node, noise: Float[ArrayLike, ''], xs: Float[Array, ' n']
) -> Float[Array, 'n n']:
    """Compute the covariance matrix of the observations, noise included."""
    n = xs.size
    return eval_cov_mat(covariance_fn, xs) + noise * jnp.eye(n)


@jax.jit
def compute_log_likelihood(
    covariance_fn: Node,
    noise: Float[ArrayLike, ''],
    xs: Float[Array, ' n'],
    ys: Float[Array, ' n'],
) -> Float[Array, '']:
    """Compute the log likelihood of the observations."""
    cov = compute_cov_matrix(covariance_fn, noise, xs)
    return MvNormal(jnp.zeros(xs.size, cov.dtype), cov).logpdf(ys)


@jax.jit
def predictive_dist(
    covariance_fn: Node,
    noise: Float[ArrayLike, ''],
    xs: Float[Array, ' n'],
    ys: Float[Array, ' n'],
    new_xs: Float[Array, ' m'],
) -> MvNormal:
    """
    Compute the distribution of new observations conditional on the old ones.

    Parameters
    ----------
    covariance_fn
    noise
        The covariance function and the noise variance.
    xs
    ys
        The points and the observations to condition on.
    new_xs
        The points to predict.

    Returns
    -------
    The multivariate normal distribution of the observations at `new_xs`.
    """
    n = xs.size
    all_xs = jnp.concatenate([xs, new_xs])
    cov = compute_cov_matrix(covariance_fn, noise, all_xs)
    cov_11 = cov[:n, :n]
    cov_12 = cov[:n, n:]
    cov_22 = cov[n:, n:]

    # cov_21 cov_11^-1 ys and cov_22 - cov_21 cov_11^-1 cov_12 via cholesky
    chol = jnp.linalg.cholesky(cov_11)
    white_ys = solve_triangular(chol, ys, lower=True)
    white_12 = solve_triangular(chol, cov_12, lower=True)
    mean = white_12.T @ white_ys
    cond_cov = cov_22 - white_12.T @ white_12
    cond_cov = (cond_cov + cond_cov.T) / 2
    return MvNormal(mean, cond_cov)


def predictive_ll(
    covariance_fn: Node,
    noise: Float[ArrayLike, ''],
    xs: Float[ArrayLike, ' n'],
    ys: Float[ArrayLike, ' n'],
    new_xs: Float[ArrayLike, ' m'],
    new_ys: Float[ArrayLike, ' m'],
) -> Float[Array, '']:
    """Compute the log density of `new_ys` conditional on `ys`."""
    dist = predictive_dist(
        covariance_fn, noise, jnp.asarray(xs), jnp.asarray(ys), jnp.asarray(new_xs)
    )
    return dist.logpdf(jnp.asarray(new_ys))


def compute_mse(
    covariance_fn: Node,
    noise: Float[ArrayLike, ''],
    xs: Float[ArrayLike, ' n'],
    ys: Float[ArrayLike, ' n'],
    new_xs: Float[ArrayLike, ' m'],
    new_ys: Float[ArrayLike, ' m'],
) -> Float[Array, '']:
    """Compute the mean squared error of the predictive mean on `new_ys`."""
    dist = predictive_dist(
        covariance_fn, noise, jnp.asarray(xs), jnp.asarray(ys), jnp.asarray(new_xs)
    )
    return jnp.mean(jnp.square(dist.mean - jnp.asarray(new_ys)))


def predict_ys(
    key: Key[Array, ''],
    covariance_fn: Node,
    noise: Float[ArrayLike, ''],
    xs: Float[ArrayLike, ' n'],
    ys: Float[ArrayLike, ' n'],
    new_xs: Float[ArrayLike, ' m'],
) -> Float[Array, ' m']:
    """Sample observations at `new_xs` conditional on `ys`."""
    dist = predictive_dist(
        covariance_fn, noise, jnp.asarray(xs), jnp.asarray(ys), jnp.asarray(new_xs)
    )
    return dist.sample(key)
