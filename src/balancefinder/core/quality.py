"""
Quality flag system for tracking per-cell provenance in taxon tables.

Log-ratio methods cannot see a zero, so every zero count is replaced by a
small positive substitute before the CLR transform. Those substitutes are
synthetic values; flagging them lets downstream code answer "which cells
were imputed?" and "what fraction of the table is observed?".

Engineering Design:
    IntFlag enables efficient bitwise operations:
    - Fast bitwise checks: flags & QualityFlag.ZERO_REPLACED
    - Memory efficient: single int per value
    - Composable: flags combine naturally with | operator

Examples:
    >>> import numpy as np
    >>> from balancefinder.core.quality import QualityFlag
    >>> flags = np.array([0, 1, 0, 1], dtype=int)
    >>> n_replaced = np.sum((flags & QualityFlag.ZERO_REPLACED) != 0)
"""

from __future__ import annotations

from enum import IntFlag

__all__ = ['QualityFlag']


class QualityFlag(IntFlag):
    """
    Bitwise flags for per-cell quality tracking in taxon matrices.

    Attributes:
        ORIGINAL: Observed value, untouched (0)
        ZERO_REPLACED: Zero count replaced by a detection-limit substitute (1)
    """

    ORIGINAL = 0
    ZERO_REPLACED = 1

    @classmethod
    def describe(cls, flag: int) -> str:
        """
        Human-readable description of a (possibly combined) flag value.

        Examples:
            >>> QualityFlag.describe(QualityFlag.ZERO_REPLACED)
            'ZERO_REPLACED'
            >>> QualityFlag.describe(0)
            'ORIGINAL'
        """
        if flag == cls.ORIGINAL:
            return 'ORIGINAL'
        names = [member.name for member in cls if member.value and flag & member.value]
        return ' | '.join(names)
