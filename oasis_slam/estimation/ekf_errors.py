################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Fault types raised by the indirect EKF core."""


class EkfIndirectError(Exception):
    """Base class for faults raised by the indirect EKF core."""


class InvalidIndexError(EkfIndirectError):
    """Raised when an index set is malformed or escapes its bound."""


class DimensionError(EkfIndirectError):
    """Raised when a matrix or vector does not match its index sets."""


class NonInvertibleCovarianceError(EkfIndirectError):
    """Raised when an innovation covariance cannot be inverted."""


class EkfConfigError(EkfIndirectError):
    """Raised when EKF configuration validation fails."""
