# gpstruct/src/gpstruct/jaxext.py
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

"""Additions to jax."""

import math
from functools import partial

from jax import Device, ensure_compile_time_eval, jit, random
from jax import numpy as jnp
from jaxtyping import Array, Float, Key


class split:
    """
    Split a key into `num` keys.

    Parameters
    ----------
    key
        The key to split.
    num
        The number of keys to split into.

    Notes
    -----
    The keys are consumed in order, so a sequence of `pop` calls always yields
    the same keys for the same input key. This is what makes a chain
    reproducible given its seed.
    """

    _keys: tuple[Key[Array, ''], ...]
    _num_used: int

    def __init__(self, key: Key[Array, ''], num: int = 2):
        self._keys = _split_unpack(key, num)
        self._num_used = 0

    def __len__(self):
        return len(self._keys) - self._num_used

    def pop(self, shape: int | tuple[int, ...] = ()) -> Key[Array, '*']:
        """
        Pop one or more keys from the list.

        Parameters
        ----------
        shape
            The shape of the keys to pop. If empty (default), a single key is
            popped and returned. If not empty, the popped key is split and
            reshaped to the target shape.

        Returns
        -------
        The popped keys as a jax array with the requested shape.

        Raises
        ------
        IndexError
            If the list is empty.
        """
        if len(self) == 0:
            msg = 'No keys left to pop'
            raise IndexError(msg)
        if not isinstance(shape, tuple):
            shape = (shape,)
        key = self._keys[self._num_used]
        self._num_used += 1
        if shape:
            key = _split_shaped(key, shape)
        return key


@partial(jit, static_argnums=(1,))
def _split_unpack(key: Key[Array, ''], num: int) -> tuple[Key[Array, ''], ...]:
    keys = random.split(key, num)
    return tuple(keys)


@partial(jit, static_argnums=(1,))
def _split_shaped(key: Key[Array, ''], shape: tuple[int, ...]) -> Key[Array, '*']:
    num = math.prod(shape)
    keys = random.split(key, num)
    return keys.reshape(shape)


def log_uniform(key: Key[Array, '']) -> Float[Array, '']:
    """Return the logarithm of a uniform sample in (0, 1], never `-inf`."""
    # 1 - u is in (0, 1] while random.uniform is in [0, 1)
    return jnp.log1p(-random.uniform(key))


def finite_or_minus_inf(x: Float[Array, '*']) -> Float[Array, '*']:
    """Replace `nan` and infinities with `-inf`."""
    return jnp.where(jnp.isfinite(x), x, -jnp.inf)


def get_default_device() -> Device:
    """Get the current default JAX device."""
    with ensure_compile_time_eval():
        return jnp.zeros(()).device
