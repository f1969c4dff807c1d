"""Proximal Policy Optimization over tapes.

See https://arxiv.org/abs/1707.06347.

Per batch of rollouts:

    ppo = PPO(params=..., actor=..., critic=..., action_space=...)
    advantages = ppo.advantage(rollouts)        # once per batch
    for _ in range(num_epochs):
        grad, terms = ppo.run(rollouts, advantages)
        grad.add_to_params(step_size)           # ascent

The objective is the mean, over every present (step, lane), of

    clipped surrogate  -  critic_weight * (V(s) - Q)^2  +  regularizer

where Q is the discounted reward-to-go. The three terms are tracked
separately so diagnostics can report each of them.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NamedTuple

import torch

from tapepg.constants import (
    DEFAULT_CRITIC_WEIGHT,
    DEFAULT_DISCOUNT,
    DEFAULT_GAE_LAMBDA,
    DEFAULT_PPO_EPSILON,
)
from tapepg.pg.gradient import Gradient
from tapepg.pg.judgers import GAEJudger, QJudger
from tapepg.pg.protocols import ActionSpace, PassthroughBase, Regularizer, TapeFunction
from tapepg.rollouts import RolloutSet
from tapepg.tape import Tape, tape_num_steps

if TYPE_CHECKING:
    from tapepg.config import PPOConfig

logger = logging.getLogger(__name__)


def ppo_objective(
    epsilon: float,
    ratios: torch.Tensor,
    advantages: torch.Tensor,
) -> torch.Tensor:
    """Clipped surrogate objective, one component per action.

    ``min(clip(ratios, 1-eps, 1+eps) * adv, ratios * adv)`` elementwise. The
    minimum makes this a pessimistic bound: moving the ratio in a favorable
    direction is never rewarded beyond the clip range, while unfavorable
    moves are always fully penalized.

    Pure and differentiable in both inputs. Callers that treat advantages as
    constants must detach them themselves.
    """
    clipped = torch.clamp(ratios, 1.0 - epsilon, 1.0 + epsilon)
    return torch.min(clipped * advantages, ratios * advantages)


@dataclass(frozen=True, slots=True)
class PPOTerms:
    """Batch means of the three objective terms. Their sum is the objective."""

    mean_advantage: float
    mean_critic: float
    mean_regularization: float

    @property
    def objective(self) -> float:
        return self.mean_advantage + self.mean_critic + self.mean_regularization


class ObjectiveTerms(NamedTuple):
    """Scalar objective tensors, named so no term is picked by position."""

    advantage: torch.Tensor
    critic: torch.Tensor
    regularization: torch.Tensor

    def total(self) -> torch.Tensor:
        return self.advantage + self.critic + self.regularization

    def scaled(self, factor: float) -> ObjectiveTerms:
        return ObjectiveTerms(
            self.advantage * factor,
            self.critic * factor,
            self.regularization * factor,
        )

    def to_terms(self) -> PPOTerms:
        return PPOTerms(
            mean_advantage=float(self.advantage.detach()),
            mean_critic=float(self.critic.detach()),
            mean_regularization=float(self.regularization.detach()),
        )


@dataclass(slots=True)
class PPO:
    """PPO trainer configuration.

    Attributes:
        params: Parameters to include in gradients.
        actor: Maps base features to action-distribution parameters.
        critic: Maps base features to value estimates ([n] or [n, 1]).
        action_space: Computes log-likelihoods of actions.
        base: Feature extractor shared by actor and critic.
        regularizer: Optional per-step bonus (e.g. entropy).
        critic_weight: Importance of the critic's loss; 0 means 1.
        discount: Reward discount factor.
        lam: GAE coefficient.
        epsilon: Ratio clip range; 0 means DEFAULT_PPO_EPSILON.
        pool_base: Evaluate ``base`` once and keep its entire output in
            memory for both heads. If False, base is evaluated separately
            for the actor and the critic, and the two paths are
            differentiated one after the other, so only one path's graph is
            alive at a time.
        normalize_targets: Normalize the critic's regression targets.
    """

    params: Sequence[torch.Tensor]
    actor: TapeFunction
    critic: TapeFunction
    action_space: ActionSpace
    base: TapeFunction = field(default_factory=PassthroughBase)
    regularizer: Regularizer | None = None
    critic_weight: float = 0.0
    discount: float = DEFAULT_DISCOUNT
    lam: float = DEFAULT_GAE_LAMBDA
    epsilon: float = 0.0
    pool_base: bool = False
    normalize_targets: bool = False

    @classmethod
    def from_config(
        cls,
        config: PPOConfig,
        *,
        params: Sequence[torch.Tensor],
        actor: TapeFunction,
        critic: TapeFunction,
        action_space: ActionSpace,
        base: TapeFunction | None = None,
        regularizer: Regularizer | None = None,
    ) -> PPO:
        return cls(
            params=params,
            actor=actor,
            critic=critic,
            action_space=action_space,
            base=base if base is not None else PassthroughBase(),
            regularizer=regularizer,
            critic_weight=config.critic_weight,
            discount=config.discount,
            lam=config.lam,
            epsilon=config.epsilon,
            pool_base=config.pool_base,
            normalize_targets=config.normalize_targets,
        )

    @property
    def effective_epsilon(self) -> float:
        return self.epsilon if self.epsilon != 0 else DEFAULT_PPO_EPSILON

    @property
    def effective_critic_weight(self) -> float:
        return self.critic_weight if self.critic_weight != 0 else DEFAULT_CRITIC_WEIGHT

    def value_function(self, inputs: Tape) -> Tape:
        """Critic composed with base."""
        return self.critic.apply(self.base.apply(inputs))

    def advantage(self, rollouts: RolloutSet) -> Tape:
        """Compute the GAE advantages for a batch.

        Call this once per batch, before any ``run``. Do not recompute it
        between runs on the same batch: the critic changes as it trains.
        """
        judger = GAEJudger(value_func=self.value_function, discount=self.discount, lam=self.lam)
        return judger.judge_actions(rollouts)

    def run(self, rollouts: RolloutSet, advantages: Tape) -> tuple[Gradient, PPOTerms | None]:
        """Compute the gradient of the PPO objective for one step.

        May be called several times per batch with the same advantages.

        Returns:
            The gradient and the objective terms. If ``params`` is empty, an
            empty Gradient and None are returned without evaluating anything.
        """
        grad = Gradient(self.params)
        if len(grad) == 0:
            return grad, None

        num_entries = tape_num_steps(rollouts.rewards)
        if num_entries == 0:
            logger.warning("PPO.run called with no present steps; returning a zero gradient")
            return grad, PPOTerms(0.0, 0.0, 0.0)

        targets = QJudger(discount=self.discount, normalize=self.normalize_targets).judge_actions(rollouts)
        scale = 1.0 / num_entries

        if self.pool_base:
            base_out = self.base.apply(rollouts.inputs)
            advantage, regularization = self._actor_sums(self.actor.apply(base_out), rollouts, advantages)
            critic = self._critic_sum(self.critic.apply(base_out), targets)
            terms = ObjectiveTerms(advantage, critic, regularization).scaled(scale)
            self._accumulate(grad, terms.total())
        else:
            advantage, regularization = self._actor_sums(
                self.actor.apply(self.base.apply(rollouts.inputs)), rollouts, advantages
            )
            self._accumulate(grad, (advantage + regularization) * scale)
            critic = self._critic_sum(self.critic.apply(self.base.apply(rollouts.inputs)), targets)
            self._accumulate(grad, critic * scale)
            terms = ObjectiveTerms(advantage.detach(), critic.detach(), regularization.detach()).scaled(scale)

        logger.debug(
            f"PPO step over {rollouts.num_lanes} lanes, {num_entries} steps "
            f"(pool_base={self.pool_base}): grad_norm={grad.norm():.4g}"
        )
        return grad, terms.to_terms()

    def _actor_sums(
        self,
        actor_out: Tape,
        rollouts: RolloutSet,
        advantages: Tape,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """Sum the clipped surrogate and regularization terms over all entries."""
        epsilon = self.effective_epsilon
        advantage_sum = torch.zeros(())
        regularization_sum = torch.zeros(())
        steps = zip(
            actor_out.read_tape(),
            rollouts.agent_outs.read_tape(),
            rollouts.actions.read_tape(),
            advantages.read_tape(),
            strict=True,
        )
        for actor, old_outs, actions, advantage in steps:
            n = actor.num_present
            if n == 0:
                continue
            new_log_probs = self.action_space.log_prob(actor.packed, actions.packed, n)
            old_log_probs = self.action_space.log_prob(old_outs.packed.detach(), actions.packed, n)
            ratios = torch.exp(new_log_probs - old_log_probs)
            adv = advantage.packed.detach().reshape(n).to(ratios.dtype)
            advantage_sum = advantage_sum.to(ratios) + ppo_objective(epsilon, ratios, adv).sum()
            if self.regularizer is not None:
                reg = self.regularizer.regularize(actor.packed, n)
                regularization_sum = regularization_sum.to(reg) + reg.sum()
        return advantage_sum, regularization_sum

    def _critic_sum(self, critic_out: Tape, targets: Tape) -> torch.Tensor:
        """Sum of ``-critic_weight * (V - target)^2`` over all entries."""
        coeff = -self.effective_critic_weight
        total = torch.zeros(())
        for critic, target in zip(critic_out.read_tape(), targets.read_tape(), strict=True):
            n = critic.num_present
            if n == 0:
                continue
            values = critic.packed.reshape(n)
            error = values - target.packed.detach().reshape(n).to(values.dtype)
            total = total.to(values) + coeff * error.pow(2).sum()
        return total

    def _accumulate(self, grad: Gradient, objective: torch.Tensor) -> None:
        """Add d(objective)/d(params) into ``grad``; unused params get nothing."""
        if not objective.requires_grad:
            return
        params = [p for p in grad if p.requires_grad]
        if not params:
            return
        grads = torch.autograd.grad(objective, params, allow_unused=True)
        for param, g in zip(params, grads):
            if g is not None:
                grad.accumulate(param, g)


__all__ = ["PPO", "PPOTerms", "ObjectiveTerms", "ppo_objective"]
