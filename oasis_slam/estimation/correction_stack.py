################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Queue of corrections awaiting one joint EKF update."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator
from typing import List

import numpy as np
from numpy.typing import NDArray

from oasis_slam.estimation.index_set import IndexSet
from oasis_slam.estimation.innovation import Innovation


@dataclass(frozen=True)
class StackedCorrection:
    """
    One queued correction

    Fields:
        inn: Innovation produced by the observation model
        INN_rsl: Jacobian of the innovation with respect to x[ia_rsl]
        ia_rsl: State indices the innovation depends on
    """

    inn: Innovation
    INN_rsl: NDArray[np.float64]
    ia_rsl: IndexSet


class CorrectionStack:
    """Insertion-ordered corrections plus their total innovation size."""

    def __init__(self) -> None:
        self._stack: List[StackedCorrection] = []
        self._inn_size: int = 0

    @property
    def inn_size(self) -> int:
        return self._inn_size

    def __len__(self) -> int:
        return len(self._stack)

    def __iter__(self) -> Iterator[StackedCorrection]:
        return iter(self._stack)

    def __getitem__(self, index: int) -> StackedCorrection:
        return self._stack[index]

    def push(self, correction: StackedCorrection) -> None:
        self._stack.append(correction)
        self._inn_size += correction.inn.size

    def clear(self) -> None:
        self._stack.clear()
        self._inn_size = 0
