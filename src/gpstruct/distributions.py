# gpstruct/src/gpstruct/distributions.py
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

"""Probability distributions used by the model.

Each distribution is a small immutable object with a `sample` method, which
takes a jax random key, and a `logpdf` method, which evaluates the log density
(or log mass) of a value. The recorded log densities are what the trace uses
to compute the Metropolis-Hastings ratios.
"""

from equinox import Module
from jax import numpy as jnp
from jax import random
from jax.scipy import stats
from jaxtyping import Array, ArrayLike, Float, Int32, Key


class Categorical(Module):
    """Categorical distribution over ``0, ..., len(probs) - 1``."""

    probs: Float[ArrayLike, ' k']

    def sample(self, key: Key[Array, '']) -> Int32[Array, '']:  # noqa: D102
        return random.categorical(key, jnp.log(jnp.asarray(self.probs)))

    def logpdf(self, x: Int32[ArrayLike, '']) -> Float[Array, '']:  # noqa: D102
        return jnp.log(jnp.asarray(self.probs)[x])


class Uniform(Module):
    """Continuous uniform distribution on ``[low, high]``."""

    low: Float[ArrayLike, ''] = 0.0
    high: Float[ArrayLike, ''] = 1.0

    def sample(self, key: Key[Array, '']) -> Float[Array, '']:  # noqa: D102
        return random.uniform(key, (), minval=self.low, maxval=self.high)

    def logpdf(self, x: Float[ArrayLike, '']) -> Float[Array, '']:  # noqa: D102
        return stats.uniform.logpdf(x, self.low, self.high - self.low)


class Gamma(Module):
    """Gamma distribution with the shape/rate parametrization."""

    shape: Float[ArrayLike, '']
    rate: Float[ArrayLike, '']

    def sample(self, key: Key[Array, '']) -> Float[Array, '']:  # noqa: D102
        return random.gamma(key, self.shape) / self.rate

    def logpdf(self, x: Float[ArrayLike, '']) -> Float[Array, '']:  # noqa: D102
        return stats.gamma.logpdf(x, self.shape, scale=1 / self.rate)


class MvNormal(Module):
    """
    Multivariate normal distribution.

    Notes
    -----
    If `cov` is not positive definite, `logpdf` returns `nan` and `sample`
    returns `nan`s; no exception is raised.
    """

    mean: Float[ArrayLike, ' n']
    cov: Float[ArrayLike, 'n n']

    def sample(self, key: Key[Array, '']) -> Float[Array, ' n']:  # noqa: D102
        return random.multivariate_normal(key, self.mean, self.cov, method='cholesky')

    def logpdf(self, x: Float[ArrayLike, ' n']) -> Float[Array, '']:  # noqa: D102
        return stats.multivariate_normal.logpdf(x, self.mean, self.cov)
