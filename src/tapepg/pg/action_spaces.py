"""Concrete action spaces and the entropy regularizer.

Both action spaces store actions the way they are sampled, so the log-probs
computed at training time are directly comparable with the ones implied by
the agent outputs recorded during the rollout.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import torch
import torch.nn.functional as F

from tapepg.pg.protocols import Entropyer


@dataclass(frozen=True, slots=True)
class Softmax:
    """Categorical distribution over logits with one-hot actions.

    params: logits [n, num_actions]; actions: one-hot [n, num_actions].
    """

    def sample(self, params: torch.Tensor) -> torch.Tensor:
        with torch.no_grad():
            indices = torch.multinomial(F.softmax(params, dim=-1), num_samples=1).squeeze(-1)
            return F.one_hot(indices, num_classes=params.shape[-1]).to(params.dtype)

    def log_prob(self, params: torch.Tensor, actions: torch.Tensor, n: int) -> torch.Tensor:
        log_probs = F.log_softmax(params, dim=-1)
        return (log_probs * actions).sum(dim=-1)

    def entropy(self, params: torch.Tensor, n: int) -> torch.Tensor:
        log_probs = F.log_softmax(params, dim=-1)
        return -(log_probs.exp() * log_probs).sum(dim=-1)


@dataclass(frozen=True, slots=True)
class Gaussian:
    """Diagonal Gaussian; params are ``[mean, log_std]`` concatenated.

    params: [n, 2 * action_dim]; actions: [n, action_dim].
    """

    def _split(self, params: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        mean, log_std = params.chunk(2, dim=-1)
        return mean, log_std

    def sample(self, params: torch.Tensor) -> torch.Tensor:
        with torch.no_grad():
            mean, log_std = self._split(params)
            return mean + log_std.exp() * torch.randn_like(mean)

    def log_prob(self, params: torch.Tensor, actions: torch.Tensor, n: int) -> torch.Tensor:
        mean, log_std = self._split(params)
        z = (actions - mean) * torch.exp(-log_std)
        per_dim = -0.5 * z.pow(2) - log_std - 0.5 * math.log(2 * math.pi)
        return per_dim.sum(dim=-1)

    def entropy(self, params: torch.Tensor, n: int) -> torch.Tensor:
        _, log_std = self._split(params)
        return (log_std + 0.5 * (1.0 + math.log(2 * math.pi))).sum(dim=-1)


@dataclass(frozen=True, slots=True)
class EntropyRegularizer:
    """Entropy bonus ``coeff * H(params)`` to encourage exploration."""

    entropyer: Entropyer
    coeff: float

    def regularize(self, params: torch.Tensor, n: int) -> torch.Tensor:
        return self.coeff * self.entropyer.entropy(params, n)


__all__ = ["Softmax", "Gaussian", "EntropyRegularizer"]
