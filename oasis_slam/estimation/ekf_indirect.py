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
Extended Kalman filter with sparse access governed by index sets
"""

from __future__ import annotations

import logging
import numbers
from typing import List
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_slam.estimation.correction_stack import CorrectionStack
from oasis_slam.estimation.correction_stack import StackedCorrection
from oasis_slam.estimation.ekf_config import EkfConfig
from oasis_slam.estimation.ekf_errors import DimensionError
from oasis_slam.estimation.ekf_errors import InvalidIndexError
from oasis_slam.estimation.ekf_errors import NonInvertibleCovarianceError
from oasis_slam.estimation.ekf_report import CorrectionReport
from oasis_slam.estimation.index_set import IndexSet
from oasis_slam.estimation.index_set import complement
from oasis_slam.estimation.index_set import union
from oasis_slam.estimation.indirect_linalg import add_to_block
from oasis_slam.estimation.indirect_linalg import add_to_vector
from oasis_slam.estimation.indirect_linalg import as_float_matrix
from oasis_slam.estimation.indirect_linalg import congruence
from oasis_slam.estimation.indirect_linalg import project_matrix
from oasis_slam.estimation.indirect_linalg import require_shape
from oasis_slam.estimation.indirect_linalg import scatter_update
from oasis_slam.estimation.indirect_linalg import symmetrize_block
from oasis_slam.estimation.innovation import Innovation
from oasis_slam.estimation.innovation import invert_covariance


_LOG: logging.Logger = logging.getLogger(__name__)


class ExtendedKalmanFilterIndirect:
    """EKF over a fixed-capacity state, updated block by block.

    Responsibility:
        Own the state mean x and covariance P of a SLAM map (robot pose plus
        landmarks) and apply prediction, landmark initialization,
        reparametrization and correction to the sub-blocks named by index
        sets, never touching the full N x N matrix.

    Data contract:
        - x has shape (N,), P has shape (N, N), N fixed at construction.
        - Index set ia_x names the state in use. Entries outside it are
          caller-managed and are not read or written.
        - P is symmetric after every public call returns.
        - Only P is propagated by predict(), initialize() and
          reparametrize(). The caller writes the matching entries of x.

    Sign convention:
        The Jacobian passed with an innovation is the Jacobian of the
        innovation itself (-H for z - h(x)). The gain is stored negated,
        K = -P J^T S^-1, so corrections are pure additions:
            x[ia_x] += K z
            P[ia_x, ia_x] += K (P J^T)^T

    Concurrency:
        Not safe for concurrent mutation. Callers serialize access.
    """

    def __init__(self, size: int, config: Optional[EkfConfig] = None) -> None:
        if not isinstance(size, numbers.Integral) or isinstance(size, bool):
            raise DimensionError("size must be an integer")
        if size <= 0:
            raise DimensionError("size must be positive")

        self._config: EkfConfig = config if config is not None else EkfConfig()
        self._config.validate()

        self._size: int = int(size)
        self._x: NDArray[np.float64] = np.zeros(size, dtype=np.float64)
        self._P: NDArray[np.float64] = np.zeros((size, size), dtype=np.float64)
        self._corr_stack: CorrectionStack = CorrectionStack()

        # Scratch, overwritten by every correction
        self._PJt: NDArray[np.float64] = np.zeros((0, 0), dtype=np.float64)
        self._K: NDArray[np.float64] = np.zeros((0, 0), dtype=np.float64)

    @property
    def size(self) -> int:
        return self._size

    @property
    def config(self) -> EkfConfig:
        return self._config

    @property
    def x(self) -> NDArray[np.float64]:
        """Live state vector, writable by the caller."""
        return self._x

    @property
    def P(self) -> NDArray[np.float64]:
        """Live covariance matrix, writable by the caller."""
        return self._P

    @property
    def stacked_count(self) -> int:
        return len(self._corr_stack)

    @property
    def stacked_size(self) -> int:
        return self._corr_stack.inn_size

    def clear(self) -> None:
        """Zero x and P and drop any queued corrections."""
        self._x.fill(0.0)
        self._P.fill(0.0)
        self._corr_stack.clear()

    def predict(
        self,
        ia_x: IndexSet,
        F_v: NDArray[np.float64],
        ia_v: IndexSet,
        *,
        F_u: Optional[NDArray[np.float64]] = None,
        U: Optional[NDArray[np.float64]] = None,
        Q: Optional[NDArray[np.float64]] = None,
    ) -> None:
        """Propagate the covariance of the moving state ia_v.

        Either control noise (F_u, U) or process noise Q already expressed in
        ia_v coordinates must be given:
            P[v, v] = F_v P[v, v] F_v^T + F_u U F_u^T  (or + Q)
            P[v, r] = F_v P[v, r],  r = ia_x \\ ia_v
        """
        if (F_u is None) != (U is None):
            raise DimensionError("F_u and U must be given together")
        if (F_u is None) == (Q is None):
            raise DimensionError("predict requires either F_u and U, or Q")

        n_v: int = len(ia_v)
        F_v = as_float_matrix(F_v, "F_v")
        noise: NDArray[np.float64]
        if F_u is not None and U is not None:
            F_u = as_float_matrix(F_u, "F_u")
            U = as_float_matrix(U, "U")
            if self._config.check_inputs:
                require_shape(F_u, (n_v, F_u.shape[1]), "F_u")
                require_shape(U, (F_u.shape[1], F_u.shape[1]), "U")
            noise = congruence(F_u, U)
        else:
            noise = as_float_matrix(Q, "Q")

        if self._config.check_inputs:
            self._check_bound(ia_x, "ia_x")
            self._check_subset(ia_v, ia_x, "ia_v")
            require_shape(F_v, (n_v, n_v), "F_v")
            require_shape(noise, (n_v, n_v), "process noise")

        ia_invariant: IndexSet = complement(ia_x, ia_v)
        scatter_update(self._P, ia_invariant, F_v, ia_v, ia_v, noise)
        self._symmetrize(ia_v)

    def initialize(
        self,
        ia_x: IndexSet,
        G_v: NDArray[np.float64],
        ia_rs: IndexSet,
        ia_l: IndexSet,
        G_y: NDArray[np.float64],
        R: NDArray[np.float64],
        *,
        G_n: Optional[NDArray[np.float64]] = None,
        N: Optional[NDArray[np.float64]] = None,
    ) -> None:
        """Create the covariance block of a new landmark ia_l.

        The landmark is a function of the state ia_rs (robot and sensor),
        the observation with noise R, and optionally an unmeasured prior
        with noise N such as inverse depth:
            P[l, l] = G_v P[rs, rs] G_v^T + G_y R G_y^T (+ G_n N G_n^T)
            P[l, r] = G_v P[rs, r],  r = ia_x \\ ia_l
        """
        if (G_n is None) != (N is None):
            raise DimensionError("G_n and N must be given together")

        n_l: int = len(ia_l)
        G_v = as_float_matrix(G_v, "G_v")
        G_y = as_float_matrix(G_y, "G_y")
        R = as_float_matrix(R, "R")
        if self._config.check_inputs:
            self._check_bound(ia_x, "ia_x")
            self._check_subset(ia_l, ia_x, "ia_l")
            self._check_subset(ia_rs, ia_x, "ia_rs")
            if not ia_rs.is_disjoint_from(ia_l):
                raise InvalidIndexError("ia_rs and ia_l must not overlap")
            require_shape(G_v, (n_l, len(ia_rs)), "G_v")
            require_shape(G_y, (n_l, G_y.shape[1]), "G_y")
            require_shape(R, (G_y.shape[1], G_y.shape[1]), "R")

        noise: NDArray[np.float64] = congruence(G_y, R)
        if G_n is not None and N is not None:
            G_n = as_float_matrix(G_n, "G_n")
            N = as_float_matrix(N, "N")
            if self._config.check_inputs:
                require_shape(G_n, (n_l, G_n.shape[1]), "G_n")
                require_shape(N, (G_n.shape[1], G_n.shape[1]), "N")
            noise = noise + congruence(G_n, N)

        ia_invariant: IndexSet = complement(ia_x, ia_l)
        scatter_update(self._P, ia_invariant, G_v, ia_rs, ia_l, noise)
        self._symmetrize(ia_l)

    def reparametrize(
        self,
        ia_x: IndexSet,
        J_l: NDArray[np.float64],
        ia_old: IndexSet,
        ia_new: IndexSet,
    ) -> None:
        """Re-express the covariance of a landmark under a new parametrization.

        Writes the ia_new rows and columns from the ia_old block:
            P[new, new] = J_l P[old, old] J_l^T
            P[new, r] = J_l P[old, r],  r = ia_x \\ (ia_old u ia_new)
        """
        J_l = as_float_matrix(J_l, "J_l")
        if self._config.check_inputs:
            self._check_bound(ia_x, "ia_x")
            self._check_subset(ia_old, ia_x, "ia_old")
            self._check_subset(ia_new, ia_x, "ia_new")
            if ia_old != ia_new and not ia_old.is_disjoint_from(ia_new):
                raise InvalidIndexError(
                    "ia_old and ia_new must be equal or must not overlap"
                )
            require_shape(J_l, (len(ia_new), len(ia_old)), "J_l")

        ia_invariant: IndexSet = complement(ia_x, union(ia_old, ia_new))
        scatter_update(self._P, ia_invariant, J_l, ia_old, ia_new)
        self._symmetrize(ia_new)

    def compute_kalman_gain(
        self,
        ia_x: IndexSet,
        inn: Innovation,
        INN_rsl: NDArray[np.float64],
        ia_rsl: IndexSet,
    ) -> NDArray[np.float64]:
        """Compute the negated gain K = -P[x, rsl] INN_rsl^T S^-1.

        Inverts the innovation covariance (cached on inn). The returned
        array is scratch and is overwritten by the next correction.
        """
        INN_rsl = as_float_matrix(INN_rsl, "INN_rsl")
        if self._config.check_inputs:
            self._check_correction(ia_x, inn, INN_rsl, ia_rsl)

        self._PJt = project_matrix(self._P, ia_x, ia_rsl) @ INN_rsl.T
        iP: NDArray[np.float64] = inn.invert_covariance(
            method=self._config.inversion, min_rcond=self._config.min_rcond
        )
        self._K = -self._PJt @ iP
        return self._K

    def correct(
        self,
        ia_x: IndexSet,
        inn: Innovation,
        INN_rsl: NDArray[np.float64],
        ia_rsl: IndexSet,
    ) -> CorrectionReport:
        """Apply one innovation to x[ia_x] and P[ia_x, ia_x].

        Raises NonInvertibleCovarianceError, leaving the state unmodified,
        when the innovation covariance cannot be inverted or the Mahalanobis
        distance of the residual is not finite.
        """
        maha_d2: float
        try:
            self.compute_kalman_gain(ia_x, inn, INN_rsl, ia_rsl)
            maha_d2 = self._check_mahalanobis(inn.mahalanobis2())
        except NonInvertibleCovarianceError as exc:
            _LOG.warning("Rejecting correction, %s", exc)
            raise

        trace_before: float = self._trace(ia_x)
        self._apply_gain(ia_x, inn.x)

        return CorrectionReport(
            inn_size=inn.size,
            stacked_count=1,
            maha_d2=maha_d2,
            trace_before=trace_before,
            trace_after=self._trace(ia_x),
        )

    def stack_correction(
        self, inn: Innovation, INN_rsl: NDArray[np.float64], ia_rsl: IndexSet
    ) -> None:
        """Queue a correction for the next correct_all_stacked() call.

        INN_rsl is copied, so the caller may reuse its buffer before the flush.
        """
        INN_rsl = as_float_matrix(INN_rsl, "INN_rsl")
        if self._config.check_inputs:
            self._check_bound(ia_rsl, "ia_rsl")
            require_shape(INN_rsl, (inn.size, len(ia_rsl)), "INN_rsl")

        self._corr_stack.push(
            StackedCorrection(inn=inn, INN_rsl=INN_rsl.copy(), ia_rsl=ia_rsl)
        )
        _LOG.debug(
            "Stacked correction of size %d (%d queued, total size %d)",
            inn.size,
            len(self._corr_stack),
            self._corr_stack.inn_size,
        )

    def clear_stack(self) -> None:
        """Drop all queued corrections without applying them."""
        self._corr_stack.clear()

    def correct_all_stacked(self, ia_x: IndexSet) -> Optional[CorrectionReport]:
        """Fold all queued corrections into one joint update and clear the queue.

        The joint cross-covariance and innovation covariance are built from
        the same P before any gain is applied, so the result does not depend
        on the order corrections were queued in:
            S[i, i] = S_i
            S[i, j] = INN_i P[rsl_i, rsl_j] INN_j^T

        Returns None when the queue is empty. Raises
        NonInvertibleCovarianceError, leaving the state and the queue
        unmodified, when the joint covariance cannot be inverted.
        """
        if len(self._corr_stack) == 0:
            return None

        corr: StackedCorrection
        if self._config.check_inputs:
            self._check_bound(ia_x, "ia_x")
            for corr in self._corr_stack:
                self._check_subset(corr.ia_rsl, ia_x, "ia_rsl")

        inn_size: int = self._corr_stack.inn_size
        PJt: NDArray[np.float64] = np.zeros((len(ia_x), inn_size), dtype=np.float64)
        z: NDArray[np.float64] = np.zeros(inn_size, dtype=np.float64)
        S: NDArray[np.float64] = np.zeros((inn_size, inn_size), dtype=np.float64)

        offsets: List[int] = [0]
        for corr in self._corr_stack:
            offsets.append(offsets[-1] + corr.inn.size)

        i: int
        for i, corr in enumerate(self._corr_stack):
            col1: int = offsets[i]
            nextcol1: int = offsets[i + 1]

            PJt[:, col1:nextcol1] = (
                project_matrix(self._P, ia_x, corr.ia_rsl) @ corr.INN_rsl.T
            )
            z[col1:nextcol1] = corr.inn.x
            S[col1:nextcol1, col1:nextcol1] = corr.inn.P

            j: int
            for j in range(i + 1, len(self._corr_stack)):
                other: StackedCorrection = self._corr_stack[j]
                col2: int = offsets[j]
                nextcol2: int = offsets[j + 1]
                cross: NDArray[np.float64] = (
                    corr.INN_rsl
                    @ project_matrix(self._P, corr.ia_rsl, other.ia_rsl)
                    @ other.INN_rsl.T
                )
                S[col1:nextcol1, col2:nextcol2] = cross
                S[col2:nextcol2, col1:nextcol1] = cross.T

        iS: NDArray[np.float64]
        maha_d2: float
        try:
            iS = invert_covariance(
                S, method=self._config.inversion, min_rcond=self._config.min_rcond
            )
            maha_d2 = self._check_mahalanobis(float(z @ iS @ z))
        except NonInvertibleCovarianceError as exc:
            _LOG.warning(
                "Rejecting stacked correction of %d observations, %s",
                len(self._corr_stack),
                exc,
            )
            raise

        self._PJt = PJt
        self._K = -PJt @ iS

        stacked_count: int = len(self._corr_stack)
        trace_before: float = self._trace(ia_x)
        self._apply_gain(ia_x, z)
        self._corr_stack.clear()

        _LOG.debug(
            "Applied %d stacked corrections of total size %d",
            stacked_count,
            inn_size,
        )

        return CorrectionReport(
            inn_size=inn_size,
            stacked_count=stacked_count,
            maha_d2=maha_d2,
            trace_before=trace_before,
            trace_after=self._trace(ia_x),
        )

    def _apply_gain(self, ia_x: IndexSet, z: NDArray[np.float64]) -> None:
        add_to_vector(self._x, ia_x, self._K @ z)
        add_to_block(self._P, ia_x, ia_x, self._K @ self._PJt.T)
        self._symmetrize(ia_x)

    @staticmethod
    def _check_mahalanobis(maha_d2: float) -> float:
        # A residual edited in place after construction can still be non-finite
        if not np.isfinite(maha_d2):
            raise NonInvertibleCovarianceError(
                "innovation has a non-finite Mahalanobis distance"
            )
        return maha_d2

    def _symmetrize(self, ia: IndexSet) -> None:
        if self._config.symmetrize:
            symmetrize_block(self._P, ia)

    def _trace(self, ia: IndexSet) -> float:
        return float(np.sum(self._P[ia.indices, ia.indices]))

    def _check_bound(self, ia: IndexSet, name: str) -> None:
        ia.check_bound(self._size, name)

    def _check_subset(self, ia: IndexSet, bound: IndexSet, name: str) -> None:
        self._check_bound(ia, name)
        if not ia.is_subset_of(bound):
            raise InvalidIndexError(f"{name} must be a subset of ia_x")

    def _check_correction(
        self,
        ia_x: IndexSet,
        inn: Innovation,
        INN_rsl: NDArray[np.float64],
        ia_rsl: IndexSet,
    ) -> None:
        self._check_bound(ia_x, "ia_x")
        self._check_subset(ia_rsl, ia_x, "ia_rsl")
        require_shape(INN_rsl, (inn.size, len(ia_rsl)), "INN_rsl")
