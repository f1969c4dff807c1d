"""Shared helpers for tests.

Keep this module small and dependency-light. It builds reward, feature and
rollout tapes from plain Python lists so individual suites don't duplicate
the Batch bookkeeping.
"""

from __future__ import annotations

import torch
import torch.nn.functional as F

from tapepg.rollouts import RolloutSet
from tapepg.tape import Batch, Tape, TapeBackend, tape_from_batches


def reward_tape(lane_rewards, backend: TapeBackend = TapeBackend.MEMORY) -> Tape:
    """Build a reward tape from per-lane reward lists.

    ``reward_tape([[1, 2, 3], [1, 1]])`` gives 2 lanes; lane 1 ends after
    two steps.
    """
    num_steps = max((len(r) for r in lane_rewards), default=0)
    batches = []
    for t in range(num_steps):
        present = [t < len(r) for r in lane_rewards]
        values = [float(r[t]) for r in lane_rewards if t < len(r)]
        batches.append(Batch.from_lists(present, values))
    return tape_from_batches(batches, Tape(backend))


def feature_tape_like(
    rewards: Tape,
    width: int,
    *,
    generator: torch.Generator | None = None,
    backend: TapeBackend = TapeBackend.MEMORY,
) -> Tape:
    """Random [n, width] features with the presence pattern of ``rewards``."""
    return tape_from_batches(
        (
            Batch(
                present=batch.present,
                packed=torch.randn(batch.num_present, width, generator=generator),
            )
            for batch in rewards.read_tape()
        ),
        Tape(backend),
    )


def softmax_rollouts(lane_rewards, obs_dim: int = 4, num_actions: int = 3, seed: int = 0) -> RolloutSet:
    """A RolloutSet with random observations, one-hot actions and logits."""
    generator = torch.Generator().manual_seed(seed)
    rewards = reward_tape(lane_rewards)
    inputs = feature_tape_like(rewards, obs_dim, generator=generator)
    agent_outs = feature_tape_like(rewards, num_actions, generator=generator)
    actions = tape_from_batches(
        Batch(
            present=batch.present,
            packed=F.one_hot(
                torch.randint(num_actions, (batch.num_present,), generator=generator),
                num_classes=num_actions,
            ).float(),
        )
        for batch in rewards.read_tape()
    )
    return RolloutSet(inputs=inputs, actions=actions, agent_outs=agent_outs, rewards=rewards)


def lane_values(tape: Tape) -> list[list[float]]:
    """Inverse of ``reward_tape`` for scalar tapes: per-lane value lists."""
    lanes: list[list[float]] | None = None
    for batch in tape.read_tape():
        if lanes is None:
            lanes = [[] for _ in range(batch.num_lanes)]
        rows = iter(batch.packed.reshape(batch.num_present).tolist())
        for lane, is_present in enumerate(batch.present.tolist()):
            if is_present:
                lanes[lane].append(next(rows))
    return lanes or []
