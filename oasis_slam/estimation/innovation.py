################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""
Innovation container handed to the EKF by observation models
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_slam.estimation.ekf_config import INVERSION
from oasis_slam.estimation.ekf_config import MIN_RCOND
from oasis_slam.estimation.ekf_errors import DimensionError
from oasis_slam.estimation.ekf_errors import NonInvertibleCovarianceError
from oasis_slam.estimation.indirect_linalg import as_float_matrix
from oasis_slam.estimation.indirect_linalg import as_float_vector
from oasis_slam.estimation.indirect_linalg import congruence
from oasis_slam.estimation.indirect_linalg import require_shape


class Innovation:
    """
    Residual between expected and actual observation, with its covariance

    The inverse covariance is computed on demand by invert_covariance() and
    cached until the next inversion. The observation model guarantees that
    the covariance is symmetric positive definite.

    Fields:
        x: Residual vector z, shape (n,)
        P: Residual covariance S, shape (n, n)
        iP: Cached inverse of S once inverted, otherwise None
    """

    def __init__(self, x: NDArray[np.float64], P: NDArray[np.float64]) -> None:
        residual: NDArray[np.float64] = as_float_vector(x, "innovation residual")
        covariance: NDArray[np.float64] = as_float_matrix(P, "innovation covariance")
        if residual.size == 0:
            raise DimensionError("innovation must have at least one dimension")
        require_shape(
            covariance, (residual.size, residual.size), "innovation covariance"
        )
        if not np.all(np.isfinite(residual)):
            raise DimensionError("innovation residual must be finite")

        self._x: NDArray[np.float64] = residual
        self._P: NDArray[np.float64] = covariance
        self._iP: Optional[NDArray[np.float64]] = None

    @classmethod
    def from_jacobian(
        cls,
        residual: NDArray[np.float64],
        INN_rsl: NDArray[np.float64],
        P_rsl: NDArray[np.float64],
        R: NDArray[np.float64],
    ) -> Innovation:
        """Build an innovation with S = INN_rsl P_rsl INN_rsl^T + R.

        INN_rsl is the Jacobian of the innovation with respect to the state
        block P_rsl, i.e. -H for an innovation z - h(x).
        """
        S: NDArray[np.float64] = congruence(
            as_float_matrix(INN_rsl, "INN_rsl"), as_float_matrix(P_rsl, "P_rsl")
        ) + as_float_matrix(R, "R")
        return cls(residual, 0.5 * (S + S.T))

    @property
    def size(self) -> int:
        return int(self._x.size)

    @property
    def x(self) -> NDArray[np.float64]:
        return self._x

    @property
    def P(self) -> NDArray[np.float64]:
        return self._P

    @property
    def iP(self) -> Optional[NDArray[np.float64]]:
        return self._iP

    def invert_covariance(
        self, *, method: str = INVERSION, min_rcond: float = MIN_RCOND
    ) -> NDArray[np.float64]:
        """Invert S, cache the result and return it."""
        self._iP = invert_covariance(self._P, method=method, min_rcond=min_rcond)
        return self._iP

    def mahalanobis2(self) -> float:
        """Return z^T S^-1 z, inverting S first when needed."""
        iP: NDArray[np.float64] = (
            self._iP if self._iP is not None else self.invert_covariance()
        )
        return float(self._x @ iP @ self._x)


def invert_covariance(
    S: NDArray[np.float64], *, method: str = INVERSION, min_rcond: float = MIN_RCOND
) -> NDArray[np.float64]:
    """Return the inverse of a covariance matrix.

    Raises NonInvertibleCovarianceError when S is non-finite, not positive
    definite (cholesky), or too badly conditioned to invert.
    """
    if S.ndim != 2 or S.shape[0] != S.shape[1] or S.shape[0] == 0:
        raise DimensionError("covariance must be a non-empty square matrix")
    if not np.all(np.isfinite(S)):
        raise NonInvertibleCovarianceError("covariance contains non-finite values")

    eye: NDArray[np.float64] = np.eye(S.shape[0], dtype=np.float64)
    iS: NDArray[np.float64]
    if method == "cholesky":
        L: NDArray[np.float64]
        try:
            L = np.linalg.cholesky(S)
        except np.linalg.LinAlgError as exc:
            raise NonInvertibleCovarianceError(
                "covariance is not positive definite"
            ) from exc

        # cond(S) = cond(L)^2, diag(L) bounds cond(L) from below
        diag: NDArray[np.float64] = np.abs(np.diag(L))
        rcond: float = float((np.min(diag) / np.max(diag)) ** 2)
        if rcond < min_rcond:
            raise NonInvertibleCovarianceError(
                f"covariance is ill-conditioned (rcond={rcond:.3e})"
            )
        iL: NDArray[np.float64] = np.linalg.solve(L, eye)
        iS = iL.T @ iL
    elif method == "lu":
        cond: float = float(np.linalg.cond(S))
        if not np.isfinite(cond) or 1.0 / cond < min_rcond:
            raise NonInvertibleCovarianceError(
                f"covariance is singular (cond={cond:.3e})"
            )
        try:
            iS = np.linalg.inv(S)
        except np.linalg.LinAlgError as exc:
            raise NonInvertibleCovarianceError("covariance is singular") from exc
    else:
        raise ValueError(f"unknown inversion method '{method}'")

    return 0.5 * (iS + iS.T)
