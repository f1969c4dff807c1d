"""Batch - one time step of a batched tape.

A batch covers N lanes (parallel episodes). Only lanes that are still
present at this step carry data: ``packed`` holds one row per present lane,
in lane order. Absent lanes are never materialized as padding.

    lanes:    0     1     2     3
    present:  T     F     T     T
    packed:  [r0,        r2,   r3]    # shape [3, *feature_shape]
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import torch

from tapepg.errors import BatchShapeError


@dataclass(frozen=True, slots=True)
class Batch:
    """Packed values for the present lanes of a single time step.

    Attributes:
        present: Bool tensor [num_lanes]; True where the lane is active.
        packed: Tensor [num_present, *feature_shape] in lane order.
    """

    present: torch.Tensor
    packed: torch.Tensor

    def __post_init__(self) -> None:
        if self.present.dtype != torch.bool or self.present.ndim != 1:
            raise BatchShapeError(
                f"present must be a 1-D bool tensor, got dtype={self.present.dtype} "
                f"ndim={self.present.ndim}"
            )
        if self.packed.ndim == 0:
            raise BatchShapeError("packed must have a leading row dimension")
        num_present = int(self.present.sum())
        if self.packed.shape[0] != num_present:
            raise BatchShapeError(
                f"packed has {self.packed.shape[0]} rows but {num_present} lanes are present"
            )

    @classmethod
    def from_lists(
        cls,
        present: Sequence[bool],
        packed: Sequence[float] | torch.Tensor,
        dtype: torch.dtype = torch.float32,
    ) -> Batch:
        """Build a batch from plain Python values (mostly for tests and tooling)."""
        present_t = torch.tensor(list(present), dtype=torch.bool)
        if isinstance(packed, torch.Tensor):
            packed_t = packed
        else:
            packed_t = torch.tensor(list(packed), dtype=dtype)
        return cls(present=present_t, packed=packed_t)

    @classmethod
    def absent(cls, num_lanes: int, like: torch.Tensor) -> Batch:
        """A batch with every lane absent, shaped like rows of ``like``."""
        return cls(
            present=torch.zeros(num_lanes, dtype=torch.bool, device=like.device),
            packed=like.new_zeros((0, *like.shape[1:])),
        )

    @property
    def num_lanes(self) -> int:
        return self.present.shape[0]

    @property
    def num_present(self) -> int:
        return self.packed.shape[0]

    @property
    def feature_shape(self) -> torch.Size:
        return self.packed.shape[1:]

    def _row_index(self) -> torch.Tensor:
        """Map each lane to its row in ``packed`` (only meaningful where present)."""
        return torch.cumsum(self.present.long(), dim=0) - 1

    def reduce(self, present: torch.Tensor) -> Batch:
        """Keep only the lanes in ``present``, which must be a subset of ours."""
        if present.shape != self.present.shape:
            raise BatchShapeError(
                f"presence mask covers {present.shape[0]} lanes, batch has {self.num_lanes}"
            )
        if bool((present & ~self.present).any()):
            raise BatchShapeError("reduce() target includes lanes absent from this batch")
        rows = self._row_index()[present]
        return Batch(present=present, packed=self.packed.index_select(0, rows))

    def expand(self, present: torch.Tensor) -> Batch:
        """Scatter into ``present`` (a superset of ours), zero-filling new lanes.

        Differentiable with respect to ``packed``.
        """
        if present.shape != self.present.shape:
            raise BatchShapeError(
                f"presence mask covers {present.shape[0]} lanes, batch has {self.num_lanes}"
            )
        if bool((self.present & ~present).any()):
            raise BatchShapeError("expand() target drops lanes present in this batch")
        target_rows = (torch.cumsum(present.long(), dim=0) - 1)[self.present]
        out = self.packed.new_zeros((int(present.sum()), *self.feature_shape))
        return Batch(present=present, packed=out.index_copy(0, target_rows, self.packed))

    def detach(self) -> Batch:
        return Batch(present=self.present, packed=self.packed.detach())

    def to(self, device: torch.device | str) -> Batch:
        return Batch(present=self.present.to(device), packed=self.packed.to(device))


def concat_lanes(batches: Sequence[Batch]) -> Batch:
    """Join batches side by side along the lane dimension.

    Lane order is preserved: lanes of ``batches[0]`` come first, then the
    lanes of ``batches[1]``, and so on. Packed rows follow the same order,
    so concatenating the packed tensors keeps them aligned with presence.
    """
    if not batches:
        raise BatchShapeError("concat_lanes() needs at least one batch")
    return Batch(
        present=torch.cat([b.present for b in batches]),
        packed=torch.cat([b.packed for b in batches]),
    )


__all__ = ["Batch", "concat_lanes"]
