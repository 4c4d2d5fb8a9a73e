################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for stacked (batch) corrections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np
import pytest

from oasis_slam.estimation.ekf_errors import InvalidIndexError
from oasis_slam.estimation.ekf_errors import NonInvertibleCovarianceError
from oasis_slam.estimation.ekf_indirect import ExtendedKalmanFilterIndirect
from oasis_slam.estimation.ekf_report import CorrectionReport
from oasis_slam.estimation.index_set import IndexSet
from oasis_slam.estimation.indirect_linalg import project_matrix
from oasis_slam.estimation.innovation import Innovation


_SIZE: int = 8
_IA_X: IndexSet = IndexSet.from_range(0, 7)


@dataclass(frozen=True)
class _Obs:
    residual: np.ndarray
    H: np.ndarray
    R: np.ndarray
    ia_rsl: IndexSet


def _random_spd(rng: np.random.Generator, n: int) -> np.ndarray:
    A: np.ndarray = rng.standard_normal((n, n))
    S: np.ndarray = A @ A.T + n * np.eye(n)
    return 0.5 * (S + S.T)


def _observations(rng: np.random.Generator, index_sets: List[List[int]]) -> List[_Obs]:
    observations: List[_Obs] = []
    indices: List[int]
    for indices in index_sets:
        n: int = len(indices)
        observations.append(
            _Obs(
                residual=rng.standard_normal(n),
                H=rng.standard_normal((n, n)) + 2.0 * np.eye(n),
                R=0.1 * np.eye(n),
                ia_rsl=IndexSet(indices),
            )
        )
    return observations


def _innovation(ekf: ExtendedKalmanFilterIndirect, obs: _Obs) -> Innovation:
    return Innovation.from_jacobian(
        obs.residual, -obs.H, project_matrix(ekf.P, obs.ia_rsl), obs.R
    )


def _stack(ekf: ExtendedKalmanFilterIndirect, observations: List[_Obs]) -> None:
    obs: _Obs
    for obs in observations:
        ekf.stack_correction(_innovation(ekf, obs), -obs.H, obs.ia_rsl)


def _filter(P: np.ndarray, x: np.ndarray) -> ExtendedKalmanFilterIndirect:
    ekf: ExtendedKalmanFilterIndirect = ExtendedKalmanFilterIndirect(_SIZE)
    ekf.P[0:7, 0:7] = P
    ekf.x[0:7] = x
    return ekf


def test_empty_stack_is_a_no_op() -> None:
    """Flushing an empty queue changes nothing."""
    ekf: ExtendedKalmanFilterIndirect = _filter(np.eye(7), np.ones(7))
    assert ekf.correct_all_stacked(_IA_X) is None
    np.testing.assert_array_equal(ekf.P[0:7, 0:7], np.eye(7))


def test_stack_bookkeeping() -> None:
    """Queue size and count follow stacking and flushing."""
    rng: np.random.Generator = np.random.default_rng(20)
    ekf: ExtendedKalmanFilterIndirect = _filter(_random_spd(rng, 7), np.zeros(7))
    _stack(ekf, _observations(rng, [[0, 1], [4], [5, 6]]))
    assert ekf.stacked_count == 3
    assert ekf.stacked_size == 5

    report = ekf.correct_all_stacked(_IA_X)
    assert report is not None
    assert report.stacked_count == 3
    assert report.inn_size == 5
    assert ekf.stacked_count == 0
    assert ekf.stacked_size == 0

    _stack(ekf, _observations(rng, [[2]]))
    ekf.clear_stack()
    assert ekf.stacked_count == 0


def test_independent_observations_match_sequential() -> None:
    """With uncorrelated observations, batch equals one-at-a-time correction."""
    rng: np.random.Generator = np.random.default_rng(21)
    P0: np.ndarray = np.diag(rng.uniform(0.5, 2.0, size=7))
    x0: np.ndarray = rng.standard_normal(7)
    observations: List[_Obs] = _observations(rng, [[0, 1], [3], [5, 6]])

    batch: ExtendedKalmanFilterIndirect = _filter(P0, x0)
    _stack(batch, observations)
    batch.correct_all_stacked(_IA_X)

    for order in ([0, 1, 2], [2, 0, 1]):
        sequential: ExtendedKalmanFilterIndirect = _filter(P0, x0)
        index: int
        for index in order:
            obs: _Obs = observations[index]
            sequential.correct(
                _IA_X, _innovation(sequential, obs), -obs.H, obs.ia_rsl
            )
        np.testing.assert_allclose(sequential.x, batch.x, atol=1e-10)
        np.testing.assert_allclose(sequential.P, batch.P, atol=1e-10)


def test_correlated_observations_are_order_independent() -> None:
    """Queue order does not change the batch result."""
    rng: np.random.Generator = np.random.default_rng(22)
    P0: np.ndarray = _random_spd(rng, 7)
    x0: np.ndarray = rng.standard_normal(7)
    observations: List[_Obs] = _observations(rng, [[0, 1], [1, 2], [4], [6, 3]])

    forward: ExtendedKalmanFilterIndirect = _filter(P0, x0)
    _stack(forward, observations)
    forward.correct_all_stacked(_IA_X)

    shuffled: ExtendedKalmanFilterIndirect = _filter(P0, x0)
    _stack(shuffled, [observations[i] for i in (3, 1, 0, 2)])
    shuffled.correct_all_stacked(_IA_X)

    np.testing.assert_allclose(forward.x, shuffled.x, atol=1e-10)
    np.testing.assert_allclose(forward.P, shuffled.P, atol=1e-10)
    np.testing.assert_allclose(forward.P, forward.P.T, atol=0.0)


def test_batch_matches_dense_joint_update() -> None:
    """The joint innovation covariance includes cross-observation blocks."""
    rng: np.random.Generator = np.random.default_rng(23)
    P0: np.ndarray = _random_spd(rng, 7)
    x0: np.ndarray = rng.standard_normal(7)
    observations: List[_Obs] = _observations(rng, [[0, 1], [1, 2], [5]])

    ekf: ExtendedKalmanFilterIndirect = _filter(P0, x0)
    _stack(ekf, observations)
    report: CorrectionReport | None = ekf.correct_all_stacked(_IA_X)

    rows: List[np.ndarray] = []
    obs: _Obs
    for obs in observations:
        H_full: np.ndarray = np.zeros((obs.H.shape[0], 7))
        H_full[:, obs.ia_rsl.indices] = obs.H
        rows.append(H_full)
    H: np.ndarray = np.vstack(rows)
    R: np.ndarray = 0.1 * np.eye(H.shape[0])
    z: np.ndarray = np.concatenate([obs.residual for obs in observations])
    S: np.ndarray = H @ P0 @ H.T + R
    K: np.ndarray = P0 @ H.T @ np.linalg.inv(S)

    np.testing.assert_allclose(ekf.x[0:7], x0 + K @ z, atol=1e-10)
    np.testing.assert_allclose(ekf.P[0:7, 0:7], P0 - K @ S @ K.T, atol=1e-10)
    assert report is not None
    assert report.maha_d2 == pytest.approx(
        float(z @ np.linalg.inv(S) @ z), rel=1e-9
    )
    assert report.trace_after <= report.trace_before


def test_singular_stack_leaves_state_and_queue() -> None:
    """A singular joint covariance rejects the whole batch atomically."""
    rng: np.random.Generator = np.random.default_rng(24)
    P0: np.ndarray = _random_spd(rng, 7)
    x0: np.ndarray = rng.standard_normal(7)
    ekf: ExtendedKalmanFilterIndirect = _filter(P0, x0)
    _stack(ekf, _observations(rng, [[0]]))
    ekf.stack_correction(
        Innovation(np.array([1.0]), np.zeros((1, 1))), np.zeros((1, 1)), IndexSet([4])
    )

    with pytest.raises(NonInvertibleCovarianceError):
        ekf.correct_all_stacked(_IA_X)

    assert ekf.stacked_count == 2
    np.testing.assert_array_equal(ekf.x[0:7], x0)
    np.testing.assert_array_equal(ekf.P[0:7, 0:7], P0)


def test_non_finite_stack_leaves_state_and_queue() -> None:
    """A residual edited to NaN while queued rejects the whole batch."""
    rng: np.random.Generator = np.random.default_rng(25)
    P0: np.ndarray = _random_spd(rng, 7)
    x0: np.ndarray = rng.standard_normal(7)
    ekf: ExtendedKalmanFilterIndirect = _filter(P0, x0)
    obs: _Obs = _observations(rng, [[0, 1], [4]])[1]
    _stack(ekf, _observations(rng, [[0, 1]]))
    inn: Innovation = _innovation(ekf, obs)
    ekf.stack_correction(inn, -obs.H, obs.ia_rsl)
    inn.x[0] = np.nan

    with pytest.raises(NonInvertibleCovarianceError):
        ekf.correct_all_stacked(_IA_X)

    assert ekf.stacked_count == 2
    np.testing.assert_array_equal(ekf.x[0:7], x0)
    np.testing.assert_array_equal(ekf.P[0:7, 0:7], P0)


def test_stacked_jacobian_is_copied() -> None:
    """Reusing the Jacobian buffer after stacking does not alter the batch."""
    rng: np.random.Generator = np.random.default_rng(26)
    P0: np.ndarray = _random_spd(rng, 7)
    x0: np.ndarray = rng.standard_normal(7)
    obs: _Obs = _observations(rng, [[2, 5]])[0]

    expected: ExtendedKalmanFilterIndirect = _filter(P0, x0)
    _stack(expected, [obs])
    expected.correct_all_stacked(_IA_X)

    ekf: ExtendedKalmanFilterIndirect = _filter(P0, x0)
    buffer: np.ndarray = -obs.H
    ekf.stack_correction(_innovation(ekf, obs), buffer, obs.ia_rsl)
    buffer[:, :] = 0.0
    ekf.correct_all_stacked(_IA_X)

    np.testing.assert_array_equal(ekf.x, expected.x)
    np.testing.assert_array_equal(ekf.P, expected.P)


def test_stack_preconditions() -> None:
    """Queued index sets are validated at stacking and at flush time."""
    ekf: ExtendedKalmanFilterIndirect = _filter(np.eye(7), np.zeros(7))
    inn: Innovation = Innovation(np.zeros(1), np.eye(1))
    with pytest.raises(InvalidIndexError):
        ekf.stack_correction(inn, np.ones((1, 1)), IndexSet([8]))

    ekf.stack_correction(inn, np.ones((1, 1)), IndexSet([6]))
    with pytest.raises(InvalidIndexError):
        ekf.correct_all_stacked(IndexSet.from_range(0, 5))
    assert ekf.stacked_count == 1
