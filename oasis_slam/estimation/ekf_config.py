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
Configuration data for the indirect EKF
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import replace
from typing import Any

from oasis_slam.estimation.ekf_errors import EkfConfigError


# Fail fast on index and dimension precondition violations
CHECK_INPUTS: bool = True
# Rewrite touched covariance blocks as 0.5 * (B + B^T) after each update
SYMMETRIZE: bool = True
# Innovation covariance inversion method
INVERSION: str = "cholesky"
# Reciprocal condition number below which S is treated as singular
MIN_RCOND: float = 1e-12

_INVERSION_METHODS: frozenset[str] = frozenset({"cholesky", "lu"})


@dataclass(frozen=True)
class EkfConfig:
    """
    Numerical policy for the indirect EKF

    Fields:
        check_inputs: Validate index sets and matrix shapes before each call
        symmetrize: Symmetrize updated covariance blocks before returning
        inversion: "cholesky" for SPD inversion or "lu" for a general inverse
        min_rcond: Reciprocal condition number floor for innovation covariances
    """

    check_inputs: bool = CHECK_INPUTS
    symmetrize: bool = SYMMETRIZE
    inversion: str = INVERSION
    min_rcond: float = MIN_RCOND

    @classmethod
    def defaults(cls) -> EkfConfig:
        """Return the default configuration."""
        return cls()

    def replace(self, **changes: Any) -> EkfConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def validate(self) -> None:
        """Validate configuration invariants."""
        if not isinstance(self.check_inputs, bool):
            raise EkfConfigError("check_inputs must be a bool")
        if not isinstance(self.symmetrize, bool):
            raise EkfConfigError("symmetrize must be a bool")
        if self.inversion not in _INVERSION_METHODS:
            raise EkfConfigError("inversion must be 'cholesky' or 'lu'")
        if not isinstance(self.min_rcond, (int, float)) or isinstance(
            self.min_rcond, bool
        ):
            raise EkfConfigError("min_rcond must be a float")
        if not 0.0 <= float(self.min_rcond) < 1.0:
            raise EkfConfigError("min_rcond must be in [0, 1)")
