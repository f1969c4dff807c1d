"""Gradient - per-parameter accumulators for an objective being maximized.

A Gradient maps each parameter (by identity) to an owned tensor of the same
shape. Accumulation is additive. Applying it is the only way the trainer
mutates parameters, and ``param.grad`` is never touched unless the caller
explicitly hands the gradient to a torch optimizer via ``to_param_grads``.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator

import torch


class Gradient:
    """Additive gradient accumulators keyed by parameter identity."""

    def __init__(self, params: Iterable[torch.Tensor] = ()) -> None:
        self._entries: dict[int, tuple[torch.Tensor, torch.Tensor]] = {}
        for param in params:
            if id(param) not in self._entries:
                self._entries[id(param)] = (param, torch.zeros_like(param).detach())

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[torch.Tensor]:
        return (param for param, _ in self._entries.values())

    def __contains__(self, param: object) -> bool:
        return id(param) in self._entries

    def __getitem__(self, param: torch.Tensor) -> torch.Tensor:
        try:
            return self._entries[id(param)][1]
        except KeyError:
            raise KeyError("parameter is not part of this gradient") from None

    def params(self) -> list[torch.Tensor]:
        return list(self)

    def items(self) -> Iterator[tuple[torch.Tensor, torch.Tensor]]:
        return iter(self._entries.values())

    def accumulate(self, param: torch.Tensor, grad: torch.Tensor) -> None:
        """Add ``grad`` into the accumulator for ``param``."""
        self[param].add_(grad.detach())

    def zero_(self) -> None:
        for _, acc in self.items():
            acc.zero_()

    def scale_(self, factor: float) -> None:
        for _, acc in self.items():
            acc.mul_(factor)

    def norm(self) -> float:
        """Global L2 norm across every accumulator."""
        total = 0.0
        for _, acc in self.items():
            total += float(acc.pow(2).sum())
        return math.sqrt(total)

    def clip_norm_(self, max_norm: float) -> float:
        """Rescale in place so the global norm is at most ``max_norm``.

        Returns the norm before clipping.
        """
        norm = self.norm()
        if norm > max_norm > 0:
            self.scale_(max_norm / norm)
        return norm

    @torch.no_grad()
    def add_to_params(self, scale: float = 1.0) -> None:
        """Gradient ascent step: ``param += scale * grad`` for every entry."""
        for param, acc in self.items():
            param.add_(acc.to(param.device), alpha=scale)

    @torch.no_grad()
    def to_param_grads(self) -> None:
        """Write ``-grad`` into ``param.grad`` for torch optimizers.

        torch optimizers minimize, while the accumulators hold the gradient of
        an objective to maximize, hence the negation. Existing ``.grad``
        values are replaced.
        """
        for param, acc in self.items():
            param.grad = (-acc).to(param.device)

    def __repr__(self) -> str:
        return f"Gradient(params={len(self)}, norm={self.norm():.4g})"


__all__ = ["Gradient"]
