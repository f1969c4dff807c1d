"""Runtime helpers for the code that drives training."""

from .coordinator import Phase, PhaseCoordinator

__all__ = ["Phase", "PhaseCoordinator"]
