"""Tape-level helpers shared by rewards, judgers and the PPO trainer.

Per-step transforms (``map_tapes``) stream; transforms that run backwards in
time (returns, GAE) go through the dense ``to_padded`` / ``from_padded``
round trip, which materializes one scalar per (step, lane).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

import torch

from tapepg.errors import EmptyRolloutError
from tapepg.tape.batch import Batch
from tapepg.tape.tape import Tape, TapeBackend


def tape_from_batches(batches: Iterable[Batch], template: Tape | None = None) -> Tape:
    """Write ``batches`` to a new closed tape.

    The tape uses ``template``'s backend settings, or memory if None.
    """
    tape = template.empty_like() if template is not None else Tape(TapeBackend.MEMORY)
    with tape.writer() as writer:
        for batch in batches:
            writer.append(batch)
    return tape


def map_tapes(fn: Callable[..., torch.Tensor], *tapes: Tape) -> Tape:
    """Apply ``fn(n, *packed)`` step by step over tapes with equal presence.

    ``n`` is the number of present lanes at the step. The result is a closed
    memory tape with the presence of ``tapes[0]``; autograd history of the
    returned packed tensors is kept.
    """
    if not tapes:
        raise ValueError("map_tapes() needs at least one tape")
    out = Tape(TapeBackend.MEMORY)
    with out.writer() as writer:
        for batches in zip(*(t.read_tape() for t in tapes), strict=True):
            first = batches[0]
            packed = fn(first.num_present, *(b.packed for b in batches))
            writer.append(Batch(present=first.present, packed=packed))
    return out


def tape_num_lanes(tape: Tape) -> int:
    """Lane count of the tape (0 for an empty tape)."""
    for batch in tape.read_tape(0, min(1, len(tape))):
        return batch.num_lanes
    return 0


def tape_num_steps(tape: Tape) -> int:
    """Total present (step, lane) entries across the tape."""
    return sum(batch.num_present for batch in tape.read_tape())


def presence_matrix(tape: Tape) -> torch.Tensor:
    """Bool tensor [num_timesteps, num_lanes] of lane presence."""
    rows = [batch.present for batch in tape.read_tape()]
    if not rows:
        return torch.zeros(0, 0, dtype=torch.bool)
    return torch.stack(rows)


def tape_mean(tape: Tape) -> torch.Tensor:
    """Mean of every present row across all steps and lanes.

    Raises:
        EmptyRolloutError: If the tape has no present entries.
    """
    total: torch.Tensor | None = None
    count = 0
    for batch in tape.read_tape():
        if batch.num_present == 0:
            continue
        step_sum = batch.packed.sum(dim=0)
        total = step_sum if total is None else total + step_sum
        count += batch.num_present
    if total is None:
        raise EmptyRolloutError("Cannot take the mean of a tape with no present entries")
    return total / count


def to_padded(tape: Tape) -> tuple[torch.Tensor, torch.Tensor]:
    """Densify a tape to ``(values [T, N, *feature], mask [T, N])``.

    Absent entries are zero. Differentiable with respect to the packed rows.
    An empty tape yields tensors of shape [0, 0].
    """
    values: list[torch.Tensor] = []
    masks: list[torch.Tensor] = []
    for batch in tape.rereader():
        full = torch.ones_like(batch.present)
        values.append(batch.expand(full).packed)
        masks.append(batch.present)
    if not values:
        return torch.zeros(0, 0), torch.zeros(0, 0, dtype=torch.bool)
    return torch.stack(values), torch.stack(masks)


def from_padded(values: torch.Tensor, mask: torch.Tensor) -> Tape:
    """Inverse of ``to_padded``: pack ``values[t][mask[t]]`` into a memory tape."""
    if values.shape[:2] != mask.shape:
        raise ValueError(f"values {tuple(values.shape)} do not match mask {tuple(mask.shape)}")
    return tape_from_batches(
        Batch(present=mask[t], packed=values[t][mask[t]]) for t in range(mask.shape[0])
    )


__all__ = [
    "tape_from_batches",
    "map_tapes",
    "tape_num_lanes",
    "tape_num_steps",
    "presence_matrix",
    "tape_mean",
    "to_padded",
    "from_padded",
]
