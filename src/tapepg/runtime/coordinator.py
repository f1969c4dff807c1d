"""Phase coordination between rollout collection and training.

Rollout collection reads the policy parameters to act; training writes them
by applying gradients; persistence reads them to save. These must never
interleave. PhaseCoordinator makes the handoff an explicit state machine
with one lock:

    IDLE -> COLLECTING -> IDLE -> TRAINING -> IDLE -> PERSISTING -> IDLE

Only one phase is active at a time. Entering a phase waits for the current
one to end. Gradients may only be applied inside TRAINING, so a save can
never observe a half-applied update.

Usage:
    coordinator = PhaseCoordinator()

    # collector thread
    with coordinator.collecting():
        rollouts = roller.rollout(envs)

    # trainer thread
    grad, terms = ppo.run(rollouts, advantages)
    with coordinator.training():
        coordinator.apply_gradient(grad, step_size)

    # shutdown
    coordinator.request_stop()
    with coordinator.persisting():
        torch.save(policy.state_dict(), path)

Termination is cooperative: ``request_stop`` only sets a flag that the outer
loop checks between batches.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from tapepg.errors import PhaseError
from tapepg.pg.gradient import Gradient

logger = logging.getLogger(__name__)


class Phase(Enum):
    """Who currently owns the policy parameters."""

    IDLE = "idle"
    COLLECTING = "collecting"
    TRAINING = "training"
    PERSISTING = "persisting"


class PhaseCoordinator:
    """Serializes parameter reads (acting, saving) against parameter writes."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._phase = Phase.IDLE
        self._owner: int | None = None
        self._stop = threading.Event()

    @property
    def phase(self) -> Phase:
        with self._cond:
            return self._phase

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        """Ask the outer loop to stop after the current batch."""
        logger.info("Stop requested; finishing the current phase")
        self._stop.set()

    def _enter(self, phase: Phase) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._owner == me:
                raise PhaseError(f"Cannot enter {phase.value} while holding {self._phase.value}")
            self._cond.wait_for(lambda: self._phase is Phase.IDLE)
            self._phase = phase
            self._owner = me
        logger.info(f"Entered {phase.value} phase")

    def _exit(self, phase: Phase) -> None:
        with self._cond:
            self._phase = Phase.IDLE
            self._owner = None
            self._cond.notify_all()
        logger.info(f"Left {phase.value} phase")

    @contextmanager
    def _hold(self, phase: Phase) -> Iterator[None]:
        self._enter(phase)
        try:
            yield
        finally:
            self._exit(phase)

    def collecting(self):
        """Hold the parameters for acting in the environment."""
        return self._hold(Phase.COLLECTING)

    def training(self):
        """Hold the parameters for applying gradients."""
        return self._hold(Phase.TRAINING)

    def persisting(self):
        """Hold the parameters for saving them."""
        return self._hold(Phase.PERSISTING)

    def apply_gradient(self, grad: Gradient, scale: float = 1.0) -> None:
        """Apply ``grad`` as an ascent step; only legal inside ``training()``.

        Raises:
            PhaseError: If the calling thread does not hold the TRAINING phase.
        """
        with self._cond:
            if self._phase is not Phase.TRAINING or self._owner != threading.get_ident():
                raise PhaseError(
                    f"Gradients can only be applied inside training(); current phase is "
                    f"{self._phase.value}"
                )
        grad.add_to_params(scale)


__all__ = ["Phase", "PhaseCoordinator"]
