"""Tapes - batched, variable-length episode sequences.

- batch.py: Batch (one time step across lanes) and lane concatenation
- tape.py: Tape, TapeWriter and the memory/compressed backends
- ops.py: per-step maps, means and dense conversions over tapes
"""

from .batch import Batch, concat_lanes

from .tape import Tape, TapeBackend, TapeWriter

from .ops import (
    from_padded,
    map_tapes,
    presence_matrix,
    tape_from_batches,
    tape_mean,
    tape_num_lanes,
    tape_num_steps,
    to_padded,
)

__all__ = [
    # Batch
    "Batch",
    "concat_lanes",
    # Tape
    "Tape",
    "TapeBackend",
    "TapeWriter",
    # Ops
    "from_padded",
    "map_tapes",
    "presence_matrix",
    "tape_from_batches",
    "tape_mean",
    "tape_num_lanes",
    "tape_num_steps",
    "to_padded",
]
