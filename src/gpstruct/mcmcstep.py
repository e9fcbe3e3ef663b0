# gpstruct/src/gpstruct/mcmcstep.py
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

"""
Functions that implement the Metropolis-Hastings moves over model traces.

Functions that do MCMC steps operate by taking as input a trace, and
outputting a new trace. The inputs are not modified, so a rejected proposal
simply returns the input trace.

The entry points are:

  - `metropolis_hastings`: Generic Metropolis-Hastings with a correction term.
  - `step_subtree`: Regenerate a random subtree of the covariance function.
  - `step_noise`: Resample the noise variance.
  - `step`: One subtree move followed by one noise move.
"""

import math
from typing import Protocol

from equinox import Module
from jaxtyping import Array, Float, Key

from gpstruct.grove import pick_random_node, tree_size
from gpstruct.jaxext import log_uniform, split
from gpstruct.model import NOISE, Trace, regenerate_noise, regenerate_subtree


class Proposal(Module):
    """
    A proposed trace with the proposal densities.

    Parameters
    ----------
    trace
        The proposed trace.
    fwd_logq
        The log density of proposing `trace` from the current trace.
    bwd_logq
        The log density of proposing the current trace from `trace`.
    """

    trace: Trace
    fwd_logq: Float[Array, '']
    bwd_logq: Float[Array, '']


class ProposalFn(Protocol):
    """Proposal type for `metropolis_hastings`."""

    def __call__(self, key: Key[Array, ''], trace: Trace) -> Proposal:
        """Propose a new trace given the current one, without modifying it."""
        ...


class CorrectionFn(Protocol):
    """Correction type for `metropolis_hastings`."""

    def __call__(self, old: Trace, new: Trace) -> Float[Array, ''] | float:
        """Return a term to add to the log acceptance ratio."""
        ...


def log_acceptance_ratio(
    trace: Trace, proposal: Proposal, correction: CorrectionFn | None = None
) -> Float[Array, '']:
    """
    Compute the log Metropolis-Hastings acceptance ratio of a proposal.

    Parameters
    ----------
    trace
        The current trace.
    proposal
        The proposal.
    correction
        Optional extra term, see `size_correction`.

    Returns
    -------
    ``log p(new) - log p(old) + log q(old | new) - log q(new | old) + correction``.
    It is `-inf` if the density of the proposed trace can not be computed, and
    `nan` if neither density can be computed.
    """
    new = proposal.trace
    log_ratio = new.log_prob() - trace.log_prob()
    log_ratio += proposal.bwd_logq - proposal.fwd_logq
    if correction is not None:
        log_ratio += correction(trace, new)
    return log_ratio


def metropolis_hastings(
    key: Key[Array, ''],
    trace: Trace,
    propose: ProposalFn,
    correction: CorrectionFn | None = None,
) -> tuple[Trace, bool]:
    """
    Do a Metropolis-Hastings step.

    Parameters
    ----------
    key
        A jax random key.
    trace
        The current trace.
    propose
        The proposal function.
    correction
        Optional function of the current and proposed traces that returns a
        term to add to the log acceptance ratio.

    Returns
    -------
    trace : Trace
        The proposed trace if accepted, otherwise the input `trace` itself.
    accepted : bool
        Whether the proposal was accepted.

    Notes
    -----
    A `nan` acceptance ratio counts as a rejection.
    """
    keys = split(key)
    proposal = propose(keys.pop(), trace)
    log_alpha = log_acceptance_ratio(trace, proposal, correction)
    accepted = bool(log_uniform(keys.pop()) < log_alpha)
    if accepted:
        return proposal.trace, True
    else:
        return trace, False


def subtree_proposal(key: Key[Array, ''], trace: Trace) -> Proposal:
    """
    Propose to regenerate a subtree picked uniformly at random.

    The subtree is sampled from the prior, so the proposal densities are the
    prior densities of the new and old subtree choices.
    """
    max_branch = trace.grammar.max_branch
    keys = split(key)
    root = pick_random_node(keys.pop(), trace.covariance_fn, max_branch)
    new_trace, discard = regenerate_subtree(keys.pop(), trace, root)
    fwd_logq = new_trace.tree.choices.subtree(root, max_branch).total_logp()
    bwd_logq = discard.total_logp()
    return Proposal(new_trace, fwd_logq, bwd_logq)


def size_correction(old: Trace, new: Trace) -> float:
    """
    Correct for the change in the number of nodes in `subtree_proposal`.

    The root of the regenerated subtree is picked uniformly among the nodes of
    the tree, so the probability of picking it is ``1 / tree_size``, which
    differs between the forward and reverse moves.

    Returns
    -------
    ``log(size(old)) - log(size(new))``.
    """
    old_size = tree_size(old.covariance_fn)
    new_size = tree_size(new.covariance_fn)
    return math.log(old_size) - math.log(new_size)


def noise_proposal(key: Key[Array, ''], trace: Trace) -> Proposal:
    """Propose a new noise variance sampled from the prior."""
    new_trace, discard = regenerate_noise(key, trace)
    return Proposal(new_trace, new_trace.top.logp(NOISE), discard.total_logp())


def step_subtree(key: Key[Array, ''], trace: Trace) -> tuple[Trace, bool]:
    """MCMC-update the covariance function by regenerating a random subtree."""
    return metropolis_hastings(key, trace, subtree_proposal, size_correction)


def step_noise(key: Key[Array, ''], trace: Trace) -> tuple[Trace, bool]:
    """MCMC-update the noise variance."""
    return metropolis_hastings(key, trace, noise_proposal)


def step(key: Key[Array, ''], trace: Trace) -> Trace:
    """
    Do one MCMC step.

    Parameters
    ----------
    key
        A jax random key.
    trace
        A model trace, as created by `gpstruct.model.generate`.

    Returns
    -------
    The new trace.
    """
    keys = split(key)
    trace, _ = step_subtree(keys.pop(), trace)
    trace, _ = step_noise(keys.pop(), trace)
    return trace
