"""Action judgers - per-step training signal from a RolloutSet.

A judger assigns a scalar to every present (step, lane) of a RolloutSet and
returns it as a tape with the rewards' presence structure.

- QJudger: discounted reward-to-go. PPO uses it as the critic's regression
  target.
- GAEJudger: Generalized Advantage Estimation (https://arxiv.org/abs/1506.02438)

      delta_t = r_t + gamma * V(s_{t+1}) - V(s_t)      V after the last step = 0
      A_t     = sum_k (gamma * lambda)^k * delta_{t+k}  within the lane's episode

  lambda = 0 gives the one-step TD residual; lambda = 1 gives the discounted
  return minus the value baseline.

GAE advantages are meant to be computed once per batch. Recomputing them
between optimization epochs would chase a critic that is being trained on
the same data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import torch

from tapepg.constants import DEFAULT_DISCOUNT, DEFAULT_GAE_LAMBDA, NORMALIZE_EPSILON
from tapepg.rewards import cumulative_rewards
from tapepg.rollouts import RolloutSet
from tapepg.tape import Tape, from_padded, tape_from_batches, to_padded

logger = logging.getLogger(__name__)

ValueFunc = Callable[[Tape], Tape]


class ActionJudger(Protocol):
    """Produces a per-step judgement tape for a RolloutSet."""

    def judge_actions(self, rollouts: RolloutSet) -> Tape: ...


def normalize_tape(tape: Tape) -> Tape:
    """Shift and scale all present entries to zero mean and unit variance."""
    values, mask = to_padded(tape)
    if not bool(mask.any()):
        return tape
    present = values[mask]
    mean = present.mean()
    std = present.std(correction=0)
    return from_padded((values - mean) / (std + NORMALIZE_EPSILON), mask)


@dataclass(frozen=True, slots=True)
class QJudger:
    """Judge actions by their discounted reward-to-go.

    Attributes:
        discount: Reward discount factor; 0 means no discounting.
        normalize: Normalize the judgements over the whole batch.
    """

    discount: float = 0.0
    normalize: bool = False

    def judge_actions(self, rollouts: RolloutSet) -> Tape:
        discount = self.discount if self.discount != 0 else 1.0
        result = cumulative_rewards(rollouts.rewards, discount)
        if self.normalize:
            result = normalize_tape(result)
        return result


@dataclass(frozen=True, slots=True)
class GAEJudger:
    """Judge actions with Generalized Advantage Estimation.

    Attributes:
        value_func: Maps the inputs tape to a tape of value estimates, one
            scalar per present entry ([n] or [n, 1] packed). It is evaluated
            under ``torch.no_grad``.
        discount: Reward discount factor (gamma).
        lam: GAE mixing coefficient (lambda).
    """

    value_func: ValueFunc
    discount: float = DEFAULT_DISCOUNT
    lam: float = DEFAULT_GAE_LAMBDA

    def judge_actions(self, rollouts: RolloutSet) -> Tape:
        rewards, mask = to_padded(rollouts.rewards)
        if mask.numel() == 0:
            logger.warning("GAEJudger: empty reward tape, returning an empty advantage tape")
            return tape_from_batches([])

        with torch.no_grad():
            values_tape = self.value_func(rollouts.inputs)
            values, _ = to_padded(values_tape)
        rewards = rewards.detach()
        values = values.reshape(mask.shape).to(rewards.dtype)

        num_timesteps = mask.shape[0]
        present = mask.to(rewards.dtype)
        advantages = torch.zeros_like(rewards)
        last_gae = torch.zeros_like(rewards[0])
        for t in reversed(range(num_timesteps)):
            if t + 1 < num_timesteps:
                next_present = present[t + 1]
                next_value = values[t + 1] * next_present
            else:
                next_present = torch.zeros_like(present[t])
                next_value = next_present
            delta = rewards[t] + self.discount * next_value - values[t]
            last_gae = delta + self.discount * self.lam * next_present * last_gae
            advantages[t] = last_gae * present[t]

        logger.debug(
            f"GAE over {mask.shape[1]} lanes x {num_timesteps} timesteps "
            f"(gamma={self.discount}, lambda={self.lam})"
        )
        return from_padded(advantages, mask)


__all__ = ["ActionJudger", "ValueFunc", "QJudger", "GAEJudger", "normalize_tape"]
