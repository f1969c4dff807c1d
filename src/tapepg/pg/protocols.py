"""Capability interfaces consumed by the judgers and the PPO trainer.

The trainer never depends on a concrete network type. Each collaborator is a
single-method Protocol:

- TapeFunction: Base, Actor and Critic. Maps a tape of inputs to a tape of
  outputs with identical presence, differentiably (outputs are memory tapes
  whose packed tensors carry autograd history back to the parameters).
- ActionSpace: log-probability of sampled actions under distribution params.
- Regularizer: per-step bonus such as entropy; absence means zero.

Protocol over ABC: implementations may also be nn.Modules without MRO
conflicts, and runtime_checkable lets callers validate wiring eagerly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import torch
from torch import nn

from tapepg.tape import Tape, map_tapes


@runtime_checkable
class TapeFunction(Protocol):
    """Differentiable function from a tape to a tape.

    Must be safe to call more than once on the same input with numerically
    consistent results (the trainer re-evaluates Base when not pooling).
    """

    def apply(self, seq: Tape) -> Tape: ...


@runtime_checkable
class ActionSpace(Protocol):
    """Log-likelihoods of actions under distribution parameters."""

    def log_prob(self, params: torch.Tensor, actions: torch.Tensor, n: int) -> torch.Tensor:
        """Return log-probabilities [n] of ``actions`` given ``params`` (n rows each)."""
        ...


@runtime_checkable
class Entropyer(Protocol):
    """Entropy of the distributions described by ``params``."""

    def entropy(self, params: torch.Tensor, n: int) -> torch.Tensor: ...


@runtime_checkable
class Regularizer(Protocol):
    """Per-step regularization term added to the objective."""

    def regularize(self, params: torch.Tensor, n: int) -> torch.Tensor: ...


@dataclass(frozen=True, slots=True)
class PassthroughBase:
    """Identity base: actor and critic read the observations directly."""

    def apply(self, seq: Tape) -> Tape:
        return seq


@dataclass(slots=True)
class ModuleTapeFunction:
    """Adapt an ``nn.Module`` to a TapeFunction.

    The module is applied to each step's packed rows ([num_present, ...]),
    so it sees a plain batch of observations and never padding.
    """

    module: nn.Module

    def apply(self, seq: Tape) -> Tape:
        return map_tapes(lambda n, packed: self.module(packed), seq)


__all__ = [
    "TapeFunction",
    "ActionSpace",
    "Entropyer",
    "Regularizer",
    "PassthroughBase",
    "ModuleTapeFunction",
]
