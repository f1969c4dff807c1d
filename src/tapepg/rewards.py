"""Reward aggregation over reward tapes.

Reward tapes pack one scalar per present lane per step. These helpers turn
them into per-lane totals, batch statistics and per-step transforms.

Note the difference between the two discounting helpers:

    discounted_rewards([r0, r1, r2], 0.5)  -> [r0, 0.5*r1, 0.25*r2]
    cumulative_rewards([r0, r1, r2], 0.5)  -> [r0 + 0.5*r1 + 0.25*r2,
                                               r1 + 0.5*r2,
                                               r2]

``discounted_rewards`` only rescales step i by factor**i; it is a building
block, not a return. Use ``cumulative_rewards`` for rewards-to-go.
"""

from __future__ import annotations

import torch

from tapepg.errors import EmptyRolloutError
from tapepg.tape import Batch, Tape, from_padded, tape_from_batches, to_padded


def _reward_sum(rewards: Tape) -> Batch | None:
    """Per-lane sums, packed over the lanes present at the first step."""
    total: Batch | None = None
    for batch in rewards.read_tape():
        if total is None:
            total = Batch(present=batch.present, packed=batch.packed.clone())
        else:
            # Lanes only ever drop out, so later steps expand into the first
            total = Batch(
                present=total.present,
                packed=total.packed + batch.expand(total.present).packed,
            )
    return total


def total_rewards(rewards: Tape) -> torch.Tensor:
    """Sum the rewards of each lane.

    Lanes absent at a step contribute nothing for that step. The result has
    one entry per lane present at the first step, in lane order; an empty
    tape yields an empty tensor.
    """
    total = _reward_sum(rewards)
    if total is None:
        return torch.zeros(0)
    return total.packed


def mean_reward(rewards: Tape) -> float:
    """Mean over lanes of the per-lane total reward.

    Raises:
        EmptyRolloutError: If the tape has no lanes.
    """
    totals = total_rewards(rewards)
    if totals.numel() == 0:
        raise EmptyRolloutError("mean_reward() is undefined for a tape with zero lanes")
    return float(totals.sum() / totals.shape[0])


def reward_variance(rewards: Tape) -> float:
    """Population variance over lanes of the per-lane total reward.

    Raises:
        EmptyRolloutError: If the tape has no lanes.
    """
    totals = total_rewards(rewards)
    if totals.numel() == 0:
        raise EmptyRolloutError("reward_variance() is undefined for a tape with zero lanes")
    return float(totals.to(torch.float64).var(correction=0))


def discounted_rewards(rewards: Tape, factor: float) -> Tape:
    """Scale the batch at step i by ``factor ** i``.

    This is a per-step multiply, not a discounted return; see the module
    docstring. The result is an independent, closed memory tape.
    """
    if not 0.0 < factor <= 1.0:
        raise ValueError(f"factor must be in (0, 1], got {factor}")
    return tape_from_batches(
        Batch(present=batch.present, packed=batch.packed * (factor**i))
        for i, batch in enumerate(rewards.read_tape())
    )


def cumulative_rewards(rewards: Tape, discount: float = 1.0) -> Tape:
    """Discounted reward-to-go for every present step of every lane.

    ``out_t = sum_k discount**k * r_{t+k}`` over the remainder of the lane's
    episode. Episodes never bleed into each other: each lane is its own
    column, and absent steps are zero.
    """
    if len(rewards) == 0:
        return tape_from_batches([])
    values, mask = to_padded(rewards)
    values = values.detach()
    out = torch.zeros_like(values)
    running = torch.zeros_like(values[0])
    for t in reversed(range(values.shape[0])):
        running = values[t] + discount * running * mask[t].to(values.dtype)
        out[t] = running
    return from_padded(out, mask)


__all__ = [
    "total_rewards",
    "mean_reward",
    "reward_variance",
    "discounted_rewards",
    "cumulative_rewards",
]
