"""Shared defaults for tapes, judgers and the PPO trainer.

Import defaults from here rather than hard-coding them in modules, so that
configuration files and code paths agree on a single value.
"""

# =============================================================================
# PPO Constants
# =============================================================================

# Clip range for the probability ratio when no epsilon is configured.
# 0.2 is the value used in the PPO paper (https://arxiv.org/abs/1707.06347).
DEFAULT_PPO_EPSILON = 0.2

# Weight of the critic's squared error relative to the surrogate term.
# A configured weight of 0 falls back to this value.
DEFAULT_CRITIC_WEIGHT = 1.0

# Reward discount factor used by both the GAE and Q judgers.
DEFAULT_DISCOUNT = 0.99

# GAE lambda: 0 = one-step TD residual, 1 = Monte-Carlo return minus baseline.
DEFAULT_GAE_LAMBDA = 0.95

# Added to the standard deviation when normalizing judged rewards.
NORMALIZE_EPSILON = 1e-8

# =============================================================================
# Tape Constants
# =============================================================================

# zlib level for compressed tapes (0 = store only, 9 = smallest output).
DEFAULT_COMPRESSION_LEVEL = 6

# Steps per compressed segment. Replay from step k decompresses the segment
# holding k and skips forward, so this bounds the work wasted per seek.
DEFAULT_CHECKPOINT_INTERVAL = 64


__all__ = [
    "DEFAULT_PPO_EPSILON",
    "DEFAULT_CRITIC_WEIGHT",
    "DEFAULT_DISCOUNT",
    "DEFAULT_GAE_LAMBDA",
    "NORMALIZE_EPSILON",
    "DEFAULT_COMPRESSION_LEVEL",
    "DEFAULT_CHECKPOINT_INTERVAL",
]
