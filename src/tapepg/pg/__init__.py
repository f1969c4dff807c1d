"""Policy-gradient core.

This subpackage contains the learnable-agent machinery:
- protocols.py: capability interfaces (TapeFunction, ActionSpace, Regularizer)
- action_spaces.py: Softmax / Gaussian action spaces and the entropy bonus
- judgers.py: QJudger (reward-to-go) and GAEJudger (advantages)
- gradient.py: Gradient accumulators
- ppo.py: clipped surrogate objective and the PPO trainer
"""

from .protocols import (
    ActionSpace,
    Entropyer,
    ModuleTapeFunction,
    PassthroughBase,
    Regularizer,
    TapeFunction,
)

from .action_spaces import EntropyRegularizer, Gaussian, Softmax

from .judgers import ActionJudger, GAEJudger, QJudger, ValueFunc, normalize_tape

from .gradient import Gradient

from .ppo import PPO, ObjectiveTerms, PPOTerms, ppo_objective

__all__ = [
    # Protocols
    "ActionSpace",
    "Entropyer",
    "ModuleTapeFunction",
    "PassthroughBase",
    "Regularizer",
    "TapeFunction",
    # Action spaces
    "EntropyRegularizer",
    "Gaussian",
    "Softmax",
    # Judgers
    "ActionJudger",
    "GAEJudger",
    "QJudger",
    "ValueFunc",
    "normalize_tape",
    # Gradient
    "Gradient",
    # PPO
    "PPO",
    "ObjectiveTerms",
    "PPOTerms",
    "ppo_objective",
]
