################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Report types returned by EKF corrections."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CorrectionReport:
    """Summary of one applied EKF correction.

    Attributes:
        inn_size: Total innovation dimension folded into the update
        stacked_count: Number of observations in the update
        maha_d2: Mahalanobis distance z^T S^-1 z of the (joint) innovation
        trace_before: trace(P[ia_x, ia_x]) before the update
        trace_after: trace(P[ia_x, ia_x]) after the update
    """

    inn_size: int
    stacked_count: int
    maha_d2: float
    trace_before: float
    trace_after: float

    def __post_init__(self) -> None:
        """Validate report fields."""
        if not isinstance(self.inn_size, int) or isinstance(self.inn_size, bool):
            raise ValueError("inn_size must be an int")
        if self.inn_size <= 0:
            raise ValueError("inn_size must be positive")
        if not isinstance(self.stacked_count, int) or isinstance(
            self.stacked_count, bool
        ):
            raise ValueError("stacked_count must be an int")
        if self.stacked_count <= 0:
            raise ValueError("stacked_count must be positive")
        if not np.isfinite(self.maha_d2):
            raise ValueError("maha_d2 must be finite")

    @property
    def trace_reduction(self) -> float:
        """Return how much the update reduced trace(P[ia_x, ia_x])."""
        return self.trace_before - self.trace_after
