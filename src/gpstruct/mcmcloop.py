# gpstruct/src/gpstruct/mcmcloop.py
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

"""Functions that implement the full MCMC loop.

The entry points are `run`, `run_mcmc` and `make_default_callback`.
"""

from collections.abc import Callable
from typing import Any, Protocol

from equinox import Module
from jax import numpy as jnp
from jaxtyping import Array, ArrayLike, Bool, Float, Int32, Key, PyTree

from gpstruct import mcmcstep
from gpstruct.grammar import Grammar, Node
from gpstruct.grove import tree_size
from gpstruct.jaxext import split
from gpstruct.model import YS, Trace, generate


class MainTrace(Module):
    """Per-iteration record of the MCMC."""

    noise: Float[Array, ' num_iterations']
    tree_size: Int32[Array, ' num_iterations']
    log_likelihood: Float[Array, ' num_iterations']
    subtree_acc: Bool[Array, ' num_iterations']
    noise_acc: Bool[Array, ' num_iterations']

    @classmethod
    def from_records(cls, records: list[dict[str, Any]]) -> 'MainTrace':
        """Stack the records collected by `run_mcmc`."""
        names = ('noise', 'tree_size', 'log_likelihood', 'subtree_acc', 'noise_acc')
        dtypes = (None, jnp.int32, None, bool, bool)
        return cls(
            **{
                name: jnp.array([r[name] for r in records], dtype)
                for name, dtype in zip(names, dtypes, strict=True)
            }
        )


CallbackState = PyTree[Any, 'T']


class Callback(Protocol):
    """Callback type for `run_mcmc`."""

    def __call__(
        self,
        *,
        trace: Trace,
        i_total: int,
        n_iters: int,
        subtree_acc_count: int,
        noise_acc_count: int,
        callback_state: CallbackState,
    ) -> CallbackState | None:
        """Do an arbitrary action after an iteration of the MCMC.

        Parameters
        ----------
        trace
            The MCMC state just after updating it.
        i_total
            The index of the last MCMC iteration (0-based).
        n_iters
            The total number of iterations.
        subtree_acc_count
        noise_acc_count
            The number of accepted moves of each type so far.
        callback_state
            The callback state, initially set to the argument passed to
            `run_mcmc`, afterwards to the value returned by the last invocation
            of the callback.

        Returns
        -------
        The new state to be passed on the next callback invocation, or `None`
        to keep the current one.
        """
        ...


Observer = Callable[[Node, Float[Array, '']], Any]


def run_mcmc(
    key: Key[Array, ''],
    trace: Trace,
    n_iters: int,
    *,
    observer: Observer | None = None,
    callback: Callback | None = None,
    callback_state: CallbackState = None,
) -> tuple[Trace, MainTrace]:
    """
    Run the MCMC.

    Parameters
    ----------
    key
        A key for random number generation.
    trace
        The initial trace, see `gpstruct.model.generate` or `init`.
    n_iters
        The number of iterations.
    observer
        Called as ``observer(covariance_fn, noise)`` at the beginning of each
        iteration, before updating the state.
    callback
        Called at the end of each iteration, see `Callback`.
    callback_state
        The initial custom state for the callback.

    Returns
    -------
    trace : Trace
        The final trace.
    main_trace : MainTrace
        The record of each iteration, taken after updating the state.

    Raises
    ------
    ValueError
        If `n_iters` is negative.

    Notes
    -----
    Each iteration does one subtree move and then one noise move, with keys
    taken in this order from a single split, so the chain is reproducible
    given `key`.
    """
    if n_iters < 0:
        msg = f'n_iters must be non-negative, got {n_iters}'
        raise ValueError(msg)

    subtree_acc_count = 0
    noise_acc_count = 0
    records = []
    for i_total in range(n_iters):
        if observer is not None:
            observer(trace.covariance_fn, trace.noise)

        keys = split(key, 3)
        key = keys.pop()
        trace, subtree_acc = mcmcstep.step_subtree(keys.pop(), trace)
        trace, noise_acc = mcmcstep.step_noise(keys.pop(), trace)

        subtree_acc_count += subtree_acc
        noise_acc_count += noise_acc
        records.append(
            dict(
                noise=trace.noise,
                tree_size=tree_size(trace.covariance_fn),
                log_likelihood=trace.log_likelihood,
                subtree_acc=subtree_acc,
                noise_acc=noise_acc,
            )
        )

        if callback is not None:
            rt = callback(
                trace=trace,
                i_total=i_total,
                n_iters=n_iters,
                subtree_acc_count=subtree_acc_count,
                noise_acc_count=noise_acc_count,
                callback_state=callback_state,
            )
            if rt is not None:
                callback_state = rt

    return trace, MainTrace.from_records(records)


def _check_data(
    xs: Float[ArrayLike, ' n'], ys: Float[ArrayLike, ' n']
) -> tuple[Float[Array, ' n'], Float[Array, ' n']]:
    xs = jnp.asarray(xs)
    ys = jnp.asarray(ys)
    if xs.ndim != 1 or ys.ndim != 1:
        msg = f'xs and ys must be 1-dimensional, got shapes {xs.shape} and {ys.shape}'
        raise ValueError(msg)
    if xs.shape != ys.shape:
        msg = f'xs and ys must have the same length, got {xs.size} and {ys.size}'
        raise ValueError(msg)
    dtype = jnp.result_type(xs, ys, float)
    return xs.astype(dtype), ys.astype(dtype)


def init(
    key: Key[Array, ''],
    xs: Float[ArrayLike, ' n'],
    ys: Float[ArrayLike, ' n'],
    *,
    grammar: Grammar = Grammar(),
) -> Trace:
    """
    Make an initial trace consistent with the observations.

    The covariance function and the noise are sampled from the prior, the
    observations are constrained to `ys`.
    """
    xs, ys = _check_data(xs, ys)
    return generate(key, xs, {YS: ys}, grammar=grammar)


def run(
    key: Key[Array, ''],
    xs: Float[ArrayLike, ' n'],
    ys: Float[ArrayLike, ' n'],
    num_iterations: int,
    observer: Observer | None = None,
    *,
    grammar: Grammar = Grammar(),
    callback: Callback | None = None,
    callback_state: CallbackState = None,
) -> tuple[Node, Float[Array, '']]:
    """
    Sample the posterior of the covariance function and the noise.

    Parameters
    ----------
    key
        A key for random number generation.
    xs
    ys
        The input points and the observations.
    num_iterations
        The number of MCMC iterations.
    observer
        Called as ``observer(covariance_fn, noise)`` at the beginning of each
        iteration. Must not modify its arguments.
    grammar
        The configuration of the prior.
    callback
    callback_state
        See `run_mcmc`.

    Returns
    -------
    covariance_fn : Node
        The final covariance function.
    noise : Float[Array, '']
        The final noise variance.
    """
    keys = split(key)
    trace = init(keys.pop(), xs, ys, grammar=grammar)
    trace, _ = run_mcmc(
        keys.pop(),
        trace,
        num_iterations,
        observer=observer,
        callback=callback,
        callback_state=callback_state,
    )
    return trace.covariance_fn, trace.noise


inference = run


def make_default_callback(
    *, dot_every: int | None = 1, report_every: int | None = 100
) -> dict[str, Any]:
    """
    Prepare a default callback for `run_mcmc`.

    The callback prints a dot on every iteration, and a longer report every
    `report_every` iterations.

    Parameters
    ----------
    dot_every
        A dot is printed every `dot_every` MCMC iterations, `None` to disable.
    report_every
        A one line report is printed every `report_every` MCMC iterations,
        `None` to disable.

    Returns
    -------
    A dictionary with the arguments to pass to `run_mcmc` as keyword arguments
    to set up the callback.

    Examples
    --------
    >>> run_mcmc(..., **make_default_callback())
    """
    return dict(
        callback=print_callback,
        callback_state=PrintCallbackState(dot_every, report_every),
    )


class PrintCallbackState(Module):
    """State for `print_callback`.

    Parameters
    ----------
    dot_every
        A dot is printed every `dot_every` MCMC iterations, `None` to disable.
    report_every
        A one line report is printed every `report_every` MCMC iterations,
        `None` to disable.
    """

    dot_every: int | None
    report_every: int | None


def print_callback(
    *,
    trace: Trace,
    i_total: int,
    n_iters: int,
    subtree_acc_count: int,
    noise_acc_count: int,
    callback_state: PrintCallbackState,
    **_,
):
    """Print a dot and/or a report periodically during the MCMC."""
    if (
        callback_state.dot_every is not None
        and (i_total + 1) % callback_state.dot_every == 0
    ):
        print('.', end='', flush=True)  # noqa: T201
        # logging can't do in-line printing so I'll stick to print

    if (
        callback_state.report_every is not None
        and (i_total + 1) % callback_state.report_every == 0
    ):
        _print_report(
            newline=callback_state.dot_every is not None,
            i_total=i_total,
            n_iters=n_iters,
            subtree_acc_count=subtree_acc_count,
            noise_acc_count=noise_acc_count,
            tree_size=tree_size(trace.covariance_fn),
            noise=trace.noise.item(),
            log_likelihood=trace.log_likelihood.item(),
        )


def _print_report(
    *,
    newline: bool,
    i_total: int,
    n_iters: int,
    subtree_acc_count: int,
    noise_acc_count: int,
    tree_size: int,
    noise: float,
    log_likelihood: float,
):
    """Print the report for `print_callback`."""
    subtree_acc = subtree_acc_count / (i_total + 1)
    noise_acc = noise_acc_count / (i_total + 1)

    prefix = '\n' if newline else ''

    print(  # noqa: T201, see print_callback for why not logging
        f'{prefix}It {i_total + 1}/{n_iters} '
        f'subtree A={subtree_acc:.0%}, '
        f'noise A={noise_acc:.0%}, '
        f'size={tree_size}, noise={noise:#.2g}, loglik={log_likelihood:#.4g}'
    )
