# gpstruct/src/gpstruct/choices.py
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

"""Addressable store of random choices.

Every random value drawn while running the model is recorded at an `Address`
together with its log probability. The set of recorded choices is the
`ChoiceMap`. Choice maps are never modified in place: all operations return
new maps, so a proposal can be built from the current state without touching
it.
"""

from collections.abc import Callable, Iterable, Iterator, Mapping
from enum import Enum
from typing import Any, NamedTuple

from jax import numpy as jnp
from jaxtyping import Array, ArrayLike, Float, Key

from gpstruct.grove import is_descendant


class Role(str, Enum):
    """The step of the recursion where a choice is made."""

    production = 'production'
    aggregation = 'aggregation'


class Address(NamedTuple):
    """
    The address of a random choice.

    Parameters
    ----------
    path
        Sequence of ``(node_id, role)`` segments. Empty for the choices made
        outside of the covariance function tree.
    field
        The name of the choice, e.g., ``'type'`` or ``'param'``.
    """

    path: tuple[tuple[int, Role], ...]
    field: str

    @property
    def node_id(self) -> int | None:
        """The tree node the choice belongs to, `None` for top-level choices."""
        if self.path:
            return self.path[0][0]
        return None

    def __str__(self):
        segments = [f'{node_id}/{role.value}' for node_id, role in self.path]
        return '/'.join([*segments, self.field])


def tree_address(node_id: int, role: Role, field: str) -> Address:
    """Make the address of a choice made in the covariance function tree."""
    return Address(((node_id, Role(role)),), field)


class Choice(NamedTuple):
    """A recorded random choice and its log probability."""

    value: Any
    logp: Float[Array, '']


class ChoiceMap(Mapping[Address, Choice]):
    """
    Immutable mapping from addresses to random choices.

    Parameters
    ----------
    choices
        The initial content.
    """

    __slots__ = ('_choices',)

    _choices: dict[Address, Choice]

    def __init__(self, choices: Mapping[Address, Choice] | None = None):
        self._choices = {} if choices is None else dict(choices)

    def __getitem__(self, addr: Address) -> Choice:
        return self._choices[addr]

    def __iter__(self) -> Iterator[Address]:
        return iter(self._choices)

    def __len__(self) -> int:
        return len(self._choices)

    def __repr__(self):
        items = ', '.join(f'{addr}: {choice.value!r}' for addr, choice in self.items())
        return f'ChoiceMap({{{items}}})'

    def value(self, addr: Address) -> Any:
        """Return the value recorded at `addr`."""
        return self._choices[addr].value

    def logp(self, addr: Address) -> Float[Array, '']:
        """Return the log probability recorded at `addr`."""
        return self._choices[addr].logp

    def value_dict(self) -> dict[Address, Any]:
        """Return a plain dictionary from addresses to choice values."""
        return {addr: choice.value for addr, choice in self._choices.items()}

    def total_logp(self) -> Float[Array, '']:
        """Return the sum of the log probabilities of all the choices."""
        return sum((choice.logp for choice in self._choices.values()), jnp.zeros(()))

    def merge(self, other: Mapping[Address, Choice]) -> 'ChoiceMap':
        """
        Return the union of two disjoint choice maps.

        Raises
        ------
        KeyError
            If an address is present in both maps.
        """
        common = self._choices.keys() & other.keys()
        if common:
            msg = f'addresses present in both choice maps: {sorted(map(str, common))}'
            raise KeyError(msg)
        return ChoiceMap({**self._choices, **other})

    def without(self, addresses: Iterable[Address]) -> 'ChoiceMap':
        """Return a copy without the given addresses (missing ones are ignored)."""
        drop = set(addresses)
        return self.restrict(lambda addr: addr not in drop)

    def restrict(self, predicate: Callable[[Address], bool]) -> 'ChoiceMap':
        """Return a copy with only the addresses that satisfy `predicate`."""
        return ChoiceMap(
            {addr: choice for addr, choice in self._choices.items() if predicate(addr)}
        )

    def subtree(self, root: int, max_branch: int) -> 'ChoiceMap':
        """Return the choices made in the tree nodes below `root` (inclusive)."""

        def in_subtree(addr: Address) -> bool:
            node_id = addr.node_id
            return node_id is not None and is_descendant(node_id, root, max_branch)

        return self.restrict(in_subtree)

    def replace_subtree(
        self, root: int, new: Mapping[Address, Choice], max_branch: int
    ) -> 'ChoiceMap':
        """
        Replace the choices of a subtree.

        All the choices below `root` are deleted, then the choices in `new`
        are inserted. The other choices are kept.
        """
        old = self.subtree(root, max_branch)
        return self.without(old).merge(new)


class Site:
    """
    Records the random choices made at one location of the model.

    Parameters
    ----------
    path
        The address path shared by all the choices made through this object.
    prev
        Choices from a previous execution. If a choice is found here, its value
        is reused instead of sampling a new one.
    constraints
        Fixed values for some addresses. They take precedence over `prev`.
    """

    def __init__(
        self,
        path: tuple[tuple[int, Role], ...] = (),
        prev: Mapping[Address, Choice] | None = None,
        constraints: Mapping[Address, ArrayLike] | None = None,
    ):
        self.path = path
        self.prev = prev
        self.constraints = constraints
        self.choices: dict[Address, Choice] = {}

    def sample(self, key: Key[Array, ''], dist: Any, field: str) -> Any:
        """
        Make a random choice.

        Parameters
        ----------
        key
            A jax random key, used only if the value is actually sampled.
        dist
            The distribution of the choice, with methods `sample` and `logpdf`.
        field
            The name of the choice.

        Returns
        -------
        The value of the choice.

        Raises
        ------
        KeyError
            If a choice with the same name was already made at this site.
        """
        addr = Address(self.path, field)
        if addr in self.choices:
            msg = f'duplicate random choice at {addr}'
            raise KeyError(msg)
        if self.constraints is not None and addr in self.constraints:
            value = jnp.asarray(self.constraints[addr])
        elif self.prev is not None and addr in self.prev:
            value = self.prev[addr].value
        else:
            value = dist.sample(key)
        self.choices[addr] = Choice(value, dist.logpdf(value))
        return value
