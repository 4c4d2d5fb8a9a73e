################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Linear algebra kernels addressing dense state arrays through index sets.

Projections return copies; writes go through the explicit ``add_*`` and
``assign_*`` helpers and through :func:`scatter_update`, which only touch the
rows and columns named by their index sets.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_slam.estimation.ekf_errors import DimensionError
from oasis_slam.estimation.index_set import IndexSet


def project_vector(x: NDArray[np.float64], ia: IndexSet) -> NDArray[np.float64]:
    """Return the entries of x addressed by ia."""
    return x[ia.indices]


def project_matrix(
    P: NDArray[np.float64], ia_rows: IndexSet, ia_cols: Optional[IndexSet] = None
) -> NDArray[np.float64]:
    """Return the block P[ia_rows, ia_cols], or P[ia_rows, ia_rows]."""
    cols: IndexSet = ia_rows if ia_cols is None else ia_cols
    return P[np.ix_(ia_rows.indices, cols.indices)]


def add_to_vector(
    x: NDArray[np.float64], ia: IndexSet, delta: NDArray[np.float64]
) -> None:
    """In-place x[ia] += delta."""
    x[ia.indices] += delta


def add_to_block(
    P: NDArray[np.float64],
    ia_rows: IndexSet,
    ia_cols: IndexSet,
    block: NDArray[np.float64],
) -> None:
    """In-place P[ia_rows, ia_cols] += block."""
    P[np.ix_(ia_rows.indices, ia_cols.indices)] += block


def assign_block(
    P: NDArray[np.float64],
    ia_rows: IndexSet,
    ia_cols: IndexSet,
    block: NDArray[np.float64],
) -> None:
    """In-place P[ia_rows, ia_cols] = block."""
    P[np.ix_(ia_rows.indices, ia_cols.indices)] = block


def symmetrize_block(P: NDArray[np.float64], ia: IndexSet) -> None:
    """In-place P[ia, ia] <- 0.5 * (P[ia, ia] + P[ia, ia]^T)."""
    ix = np.ix_(ia.indices, ia.indices)
    block: NDArray[np.float64] = P[ix]
    P[ix] = 0.5 * (block + block.T)


def congruence(J: NDArray[np.float64], cov: NDArray[np.float64]) -> NDArray[np.float64]:
    """Return J cov J^T."""
    return J @ cov @ J.T


def scatter_update(
    P: NDArray[np.float64],
    ia_invariant: IndexSet,
    J: NDArray[np.float64],
    ia_in: IndexSet,
    ia_out: IndexSet,
    Q: Optional[NDArray[np.float64]] = None,
) -> None:
    """Rewrite the ia_out rows and columns of P for the map y_out = J y_in.

    Equations:
        P[out, inv] = J P[in, inv]
        P[inv, out] = P[out, inv]^T
        P[out, out] = J P[in, in] J^T + Q

    Entries addressed only by ia_invariant are read but never written, so
    the cost scales with the touched block rather than with the state size.
    ia_out must be disjoint from ia_invariant. ia_in may equal ia_out.
    """
    inv: NDArray[np.intp] = ia_invariant.indices
    idx_in: NDArray[np.intp] = ia_in.indices
    idx_out: NDArray[np.intp] = ia_out.indices

    # Read both blocks before writing, ia_in may alias ia_out
    cross: NDArray[np.float64] = J @ P[np.ix_(idx_in, inv)]
    block: NDArray[np.float64] = congruence(J, P[np.ix_(idx_in, idx_in)])
    if Q is not None:
        block = block + Q

    P[np.ix_(idx_out, inv)] = cross
    P[np.ix_(inv, idx_out)] = cross.T
    P[np.ix_(idx_out, idx_out)] = block


def require_shape(
    array: NDArray[np.float64], shape: tuple[int, ...], name: str
) -> None:
    """Raise DimensionError unless array has the expected shape."""
    if array.shape != shape:
        raise DimensionError(f"{name} must have shape {shape}, got {array.shape}")


def as_float_matrix(value: object, name: str) -> NDArray[np.float64]:
    """Return value as a two-dimensional float64 array."""
    array: NDArray[np.float64] = np.asarray(value, dtype=np.float64)
    if array.ndim != 2:
        raise DimensionError(f"{name} must be a matrix")
    return array


def as_float_vector(value: object, name: str) -> NDArray[np.float64]:
    """Return value as a one-dimensional float64 array."""
    array: NDArray[np.float64] = np.asarray(value, dtype=np.float64)
    if array.ndim != 1:
        raise DimensionError(f"{name} must be a vector")
    return array
