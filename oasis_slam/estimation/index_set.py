################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Ordered sets of unique state indices used for indirect covariance access."""

from __future__ import annotations

from typing import Iterable
from typing import Iterator

import numpy as np
from numpy.typing import NDArray

from oasis_slam.estimation.ekf_errors import InvalidIndexError


class IndexSet:
    """Ordered sequence of unique, non-negative indices into the state.

    Position k of the set maps row/column k of any Jacobian or noise block
    passed alongside it to state entry ``indices[k]``, so the caller's order
    is kept. Set algebra keeps the order of the first operand.

    Index sets are immutable and compare by value.
    """

    __slots__ = ("_indices",)

    def __init__(self, indices: Iterable[int]) -> None:
        raw: NDArray = np.asarray(
            indices if isinstance(indices, np.ndarray) else list(indices)
        )
        if raw.ndim != 1:
            raise InvalidIndexError("indices must be a one-dimensional sequence")
        if raw.size > 0 and not np.issubdtype(raw.dtype, np.integer):
            raise InvalidIndexError("indices must be integers")

        array: NDArray[np.intp] = raw.astype(np.intp, copy=True)
        if array.size > 0 and int(array.min()) < 0:
            raise InvalidIndexError("indices must be non-negative")
        if np.unique(array).size != array.size:
            raise InvalidIndexError("indices must be unique")

        array.setflags(write=False)
        self._indices: NDArray[np.intp] = array

    @classmethod
    def from_range(cls, start: int, stop: int) -> IndexSet:
        """Return the contiguous set [start, stop)."""
        if start < 0 or stop < start:
            raise InvalidIndexError(f"invalid range [{start}, {stop})")
        return cls(np.arange(start, stop, dtype=np.intp))

    @classmethod
    def empty(cls) -> IndexSet:
        return cls(np.zeros(0, dtype=np.intp))

    @property
    def indices(self) -> NDArray[np.intp]:
        """Read-only integer array of the indices, in set order."""
        return self._indices

    def __len__(self) -> int:
        return int(self._indices.size)

    def __iter__(self) -> Iterator[int]:
        value: np.intp
        for value in self._indices:
            yield int(value)

    def __contains__(self, index: object) -> bool:
        if not isinstance(index, (int, np.integer)):
            return False
        return bool(np.any(self._indices == index))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IndexSet):
            return NotImplemented
        return bool(np.array_equal(self._indices, other._indices))

    def __hash__(self) -> int:
        return hash(tuple(self))

    def __repr__(self) -> str:
        return f"IndexSet({list(self)})"

    def is_subset_of(self, bound: IndexSet) -> bool:
        """Return True when every index is also in ``bound``."""
        return bool(np.all(np.isin(self._indices, bound._indices)))

    def is_disjoint_from(self, other: IndexSet) -> bool:
        """Return True when no index is shared with ``other``."""
        return not bool(np.any(np.isin(self._indices, other._indices)))

    def check_bound(self, size: int, name: str) -> None:
        """Raise InvalidIndexError unless all indices are in [0, size)."""
        if self._indices.size > 0 and int(self._indices.max()) >= size:
            raise InvalidIndexError(
                f"{name} index {int(self._indices.max())} out of range for "
                f"state of size {size}"
            )


def complement(bound: IndexSet, subset: IndexSet) -> IndexSet:
    """Return the indices of ``bound`` that are not in ``subset``."""
    mask: NDArray[np.bool_] = np.isin(bound.indices, subset.indices, invert=True)
    return IndexSet(bound.indices[mask])


def union(a: IndexSet, b: IndexSet) -> IndexSet:
    """Return ``a`` followed by the indices of ``b`` not already in ``a``."""
    extra: NDArray[np.intp] = b.indices[np.isin(b.indices, a.indices, invert=True)]
    return IndexSet(np.concatenate([a.indices, extra]))


def intersection(a: IndexSet, b: IndexSet) -> IndexSet:
    """Return the indices of ``a`` that are also in ``b``."""
    return IndexSet(a.indices[np.isin(a.indices, b.indices)])
