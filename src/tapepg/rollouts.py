"""RolloutSet - one training batch of recorded episodes.

A RolloutSet owns four tapes with the exact same presence pattern (same
lanes, same episode lengths):

- inputs: observations fed to the policy
- actions: the sampled actions
- agent_outs: distribution parameters the policy produced at rollout time,
  needed for the *old* log-probability of each action
- rewards: scalar rewards, packed as [num_present]

Rollouts gathered by separate rollout calls are joined with
``pack_rollout_sets`` before training.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from itertools import zip_longest

from tapepg.config import TapeConfig
from tapepg.rewards import mean_reward, reward_variance
from tapepg.tape import Batch, Tape, concat_lanes, tape_num_lanes, tape_num_steps

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RolloutSet:
    """Inputs, actions, old agent outputs and rewards for a set of episodes."""

    inputs: Tape
    actions: Tape
    agent_outs: Tape
    rewards: Tape

    @property
    def num_lanes(self) -> int:
        """Number of episodes (lanes) in the set."""
        return tape_num_lanes(self.rewards)

    @property
    def num_timesteps(self) -> int:
        """Length of the longest episode."""
        return len(self.rewards)

    def num_steps(self) -> int:
        """Total environment steps across every episode."""
        return tape_num_steps(self.rewards)

    def mean_reward(self) -> float:
        return mean_reward(self.rewards)

    def reward_variance(self) -> float:
        return reward_variance(self.rewards)

    def tapes(self) -> tuple[Tape, Tape, Tape, Tape]:
        return (self.inputs, self.actions, self.agent_outs, self.rewards)


def _pack_tapes(tapes: Sequence[Tape], template: Tape) -> Tape:
    """Concatenate tapes along lanes, padding finished tapes with absent lanes."""
    lane_counts = [tape_num_lanes(t) for t in tapes]
    fillers: list[Batch | None] = [None] * len(tapes)
    out = template.empty_like()
    readers: list[Iterator[Batch]] = [t.read_tape() for t in tapes]
    with out.writer() as writer:
        for step in zip_longest(*readers):
            parts: list[Batch] = []
            for i, batch in enumerate(step):
                if lane_counts[i] == 0:
                    continue
                if batch is None:
                    filler = fillers[i]
                    assert filler is not None
                    parts.append(filler)
                    continue
                if fillers[i] is None:
                    fillers[i] = Batch.absent(lane_counts[i], like=batch.packed)
                parts.append(batch)
            writer.append(concat_lanes(parts))
    return out


def pack_rollout_sets(
    rollouts: Sequence[RolloutSet],
    input_config: TapeConfig | None = None,
) -> RolloutSet:
    """Join rollout sets along the lane dimension.

    Lanes of ``rollouts[0]`` come first, then ``rollouts[1]``, and so on;
    each lane keeps its original steps and presence. The packed set has as
    many time steps as the longest input.

    Args:
        rollouts: Sets to join; must be non-empty.
        input_config: Backend for the packed inputs tape. Defaults to the
            backend of ``rollouts[0].inputs`` (often compressed frames).
            The other three tapes keep the backends of ``rollouts[0]``.
    """
    if not rollouts:
        raise ValueError("pack_rollout_sets() needs at least one RolloutSet")
    first = rollouts[0]
    input_template = Tape.from_config(input_config) if input_config is not None else first.inputs
    packed = RolloutSet(
        inputs=_pack_tapes([r.inputs for r in rollouts], input_template),
        actions=_pack_tapes([r.actions for r in rollouts], first.actions),
        agent_outs=_pack_tapes([r.agent_outs for r in rollouts], first.agent_outs),
        rewards=_pack_tapes([r.rewards for r in rollouts], first.rewards),
    )
    logger.debug(
        f"Packed {len(rollouts)} rollout sets into {packed.num_lanes} lanes, "
        f"{packed.num_timesteps} timesteps"
    )
    return packed


__all__ = ["RolloutSet", "pack_rollout_sets"]
