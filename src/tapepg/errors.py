"""Exceptions raised by tapepg.

Contract violations by collaborators (mismatched tapes inside a RolloutSet,
networks raising in forward/backward) are not translated here; they surface
unmodified from torch or the collaborator itself.
"""

from __future__ import annotations


class TapeError(RuntimeError):
    """Base class for tape lifecycle and replay failures."""


class TapeClosedError(TapeError):
    """Raised when writing to a tape whose writer has been closed."""


class TapeReadError(TapeError):
    """Raised for replay requests outside the recorded range."""

    def __init__(self, start: int, end: int, length: int) -> None:
        super().__init__(f"Cannot read steps [{start}, {end}) from tape of length {length}")
        self.start = start
        self.end = end
        self.length = length


class BatchShapeError(ValueError):
    """Raised when a Batch's packed rows disagree with its presence mask."""


class EmptyRolloutError(ValueError):
    """Raised when a statistic over lanes is requested for zero lanes."""


class PhaseError(RuntimeError):
    """Raised when parameters are touched outside the phase that owns them."""


__all__ = [
    "TapeError",
    "TapeClosedError",
    "TapeReadError",
    "BatchShapeError",
    "EmptyRolloutError",
    "PhaseError",
]
