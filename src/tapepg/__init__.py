"""tapepg - tape-based policy-gradient training core.

Turns batches of recorded rollouts into parameter gradients:

- tape: batched, variable-length episode sequences (memory or compressed)
- rollouts: RolloutSet and lane-wise packing
- rewards: per-lane totals, batch statistics, discounting helpers
- pg: judgers (GAE, reward-to-go), PPO objective and trainer
- runtime: phase coordination between rollout collection and training

Example:
    from tapepg import PPO, pack_rollout_sets
    from tapepg.pg import ModuleTapeFunction, Softmax
"""

__version__ = "0.1.0"

from tapepg.config import PPOConfig, TapeConfig
from tapepg.errors import (
    BatchShapeError,
    EmptyRolloutError,
    PhaseError,
    TapeClosedError,
    TapeError,
    TapeReadError,
)
from tapepg.pg import PPO, Gradient, PPOTerms, ppo_objective
from tapepg.rewards import (
    cumulative_rewards,
    discounted_rewards,
    mean_reward,
    reward_variance,
    total_rewards,
)
from tapepg.rollouts import RolloutSet, pack_rollout_sets
from tapepg.tape import Batch, Tape, TapeBackend

__all__ = [
    "__version__",
    # Config
    "PPOConfig",
    "TapeConfig",
    # Errors
    "BatchShapeError",
    "EmptyRolloutError",
    "PhaseError",
    "TapeClosedError",
    "TapeError",
    "TapeReadError",
    # PPO
    "PPO",
    "Gradient",
    "PPOTerms",
    "ppo_objective",
    # Rewards
    "cumulative_rewards",
    "discounted_rewards",
    "mean_reward",
    "reward_variance",
    "total_rewards",
    # Rollouts
    "RolloutSet",
    "pack_rollout_sets",
    # Tapes
    "Batch",
    "Tape",
    "TapeBackend",
]
