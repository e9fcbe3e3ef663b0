# gpstruct/src/gpstruct/prepdata.py
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

"""Functions to prepare a dataset for the MCMC."""

from jax import numpy as jnp
from jaxtyping import Array, ArrayLike, Float


def rescale(
    xs: Float[ArrayLike, ' n'], ys: Float[ArrayLike, ' n']
) -> tuple[Float[Array, ' n'], Float[Array, ' n']]:
    """
    Rescale a dataset to the range of the priors.

    Parameters
    ----------
    xs
        The input points.
    ys
        The observations.

    Returns
    -------
    xs : Float[Array, 'n']
        The input points mapped linearly to [0, 1].
    ys : Float[Array, 'n']
        The observations with zero mean and unit standard deviation.

    Raises
    ------
    ValueError
        If the arrays are not 1d of the same length, if there are less than two
        points, or if all the points or observations are equal.
    """
    xs = jnp.asarray(xs)
    ys = jnp.asarray(ys)
    if xs.ndim != 1 or xs.shape != ys.shape:
        msg = f'xs and ys must be 1d with the same length, got {xs.shape} and {ys.shape}'
        raise ValueError(msg)
    if xs.size < 2:
        msg = 'at least two points are needed to rescale'
        raise ValueError(msg)

    xs_range = jnp.max(xs) - jnp.min(xs)
    ys_std = jnp.std(ys)
    if xs_range == 0 or ys_std == 0:
        msg = 'can not rescale constant data'
        raise ValueError(msg)

    return (xs - jnp.min(xs)) / xs_range, (ys - jnp.mean(ys)) / ys_std


def train_test_split(
    xs: Float[ArrayLike, ' n'], ys: Float[ArrayLike, ' n'], n_train: int
) -> tuple[
    Float[Array, ' {n_train}'],
    Float[Array, ' {n_train}'],
    Float[Array, ' n-{n_train}'],
    Float[Array, ' n-{n_train}'],
]:
    """
    Split a dataset in a training and a test part by position.

    Returns
    -------
    xs_train
    ys_train
        The first `n_train` points.
    xs_test
    ys_test
        The remaining points.

    Raises
    ------
    ValueError
        If `n_train` is not in ``[0, len(xs)]``.
    """
    xs = jnp.asarray(xs)
    ys = jnp.asarray(ys)
    if not 0 <= n_train <= xs.size:
        msg = f'n_train={n_train} out of range for {xs.size} points'
        raise ValueError(msg)
    return xs[:n_train], ys[:n_train], xs[n_train:], ys[n_train:]
