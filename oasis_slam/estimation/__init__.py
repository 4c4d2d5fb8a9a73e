################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Indirect extended Kalman filter core for SLAM."""

from __future__ import annotations

from oasis_slam.estimation.correction_stack import CorrectionStack
from oasis_slam.estimation.correction_stack import StackedCorrection
from oasis_slam.estimation.ekf_config import EkfConfig
from oasis_slam.estimation.ekf_errors import DimensionError
from oasis_slam.estimation.ekf_errors import EkfConfigError
from oasis_slam.estimation.ekf_errors import EkfIndirectError
from oasis_slam.estimation.ekf_errors import InvalidIndexError
from oasis_slam.estimation.ekf_errors import NonInvertibleCovarianceError
from oasis_slam.estimation.ekf_indirect import ExtendedKalmanFilterIndirect
from oasis_slam.estimation.ekf_report import CorrectionReport
from oasis_slam.estimation.index_set import IndexSet
from oasis_slam.estimation.index_set import complement
from oasis_slam.estimation.index_set import intersection
from oasis_slam.estimation.index_set import union
from oasis_slam.estimation.innovation import Innovation


__all__ = [
    "CorrectionReport",
    "CorrectionStack",
    "DimensionError",
    "EkfConfig",
    "EkfConfigError",
    "EkfIndirectError",
    "ExtendedKalmanFilterIndirect",
    "IndexSet",
    "Innovation",
    "InvalidIndexError",
    "NonInvertibleCovarianceError",
    "StackedCorrection",
    "complement",
    "intersection",
    "union",
]
