"""Configuration for tapes and the PPO trainer.

Pydantic models, validated on construction. Supports built-in profiles
(profiles.yaml next to this module) with overrides, and custom YAML files.

Usage:
    # Defaults
    config = PPOConfig()

    # Built-in profile, optionally overridden
    config = PPOConfig.from_profile("frames", {"epsilon": 0.1})

    # Custom YAML file
    config = PPOConfig.from_yaml("ppo.yaml")

    # Build a trainer
    ppo = PPO.from_config(config, params=..., actor=..., critic=..., action_space=...)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field

from tapepg.constants import (
    DEFAULT_CHECKPOINT_INTERVAL,
    DEFAULT_COMPRESSION_LEVEL,
    DEFAULT_CRITIC_WEIGHT,
    DEFAULT_DISCOUNT,
    DEFAULT_GAE_LAMBDA,
    DEFAULT_PPO_EPSILON,
)
from tapepg.tape.tape import TapeBackend

PROFILES_PATH = Path(__file__).parent / "profiles.yaml"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge override into base dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_mapping(path: Path, what: str) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a mapping, got {type(data).__name__}: {path}")
    return data


class TapeConfig(BaseModel):
    """Backend selection for a tape.

    Attributes:
        backend: MEMORY (random replay, differentiable) or COMPRESSED
            (zlib segments, forward replay from checkpoints).
        compression_level: zlib level 0-9 for the compressed backend.
        checkpoint_interval: Steps per compressed segment.
        quantize_uint8: Store values as rounded uint8 (lossy; for 0-255 frames).
    """

    model_config = ConfigDict(extra="forbid")

    backend: TapeBackend = TapeBackend.MEMORY
    compression_level: int = Field(default=DEFAULT_COMPRESSION_LEVEL, ge=0, le=9)
    checkpoint_interval: int = Field(default=DEFAULT_CHECKPOINT_INTERVAL, ge=1)
    quantize_uint8: bool = False


class PPOConfig(BaseModel):
    """PPO trainer hyperparameters.

    Attributes:
        profile_name: Name of the profile this config was loaded from.
        discount: Reward discount factor in (0, 1].
        lam: GAE lambda in [0, 1].
        epsilon: Ratio clip range; 0 selects DEFAULT_PPO_EPSILON.
        critic_weight: Critic loss weight; 0 selects DEFAULT_CRITIC_WEIGHT.
        pool_base: Keep the shared base output in memory and evaluate it once,
            instead of evaluating it separately for actor and critic.
        normalize_targets: Normalize critic regression targets over the batch.
        input_tape: Backend for packed observation tapes.
    """

    model_config = ConfigDict(extra="forbid")

    profile_name: str = "custom"
    discount: float = Field(default=DEFAULT_DISCOUNT, gt=0.0, le=1.0)
    lam: float = Field(default=DEFAULT_GAE_LAMBDA, ge=0.0, le=1.0)
    epsilon: float = Field(default=DEFAULT_PPO_EPSILON, ge=0.0)
    critic_weight: float = Field(default=DEFAULT_CRITIC_WEIGHT, ge=0.0)
    pool_base: bool = False
    normalize_targets: bool = False
    input_tape: TapeConfig = Field(default_factory=TapeConfig)

    @classmethod
    def from_yaml(cls, path: Path | str, overrides: dict[str, Any] | None = None) -> PPOConfig:
        """Load configuration from a YAML file.

        Raises:
            ValueError: If the YAML file is empty, malformed, or not a mapping.
        """
        data = _load_mapping(Path(path), "PPO config YAML")
        if overrides:
            data = deep_merge(data, overrides)
        return cls(**data)

    @classmethod
    def from_profile(cls, name: str, overrides: dict[str, Any] | None = None) -> PPOConfig:
        """Load a built-in profile by name (see profiles.yaml).

        Raises:
            ValueError: If the profile is unknown or profiles.yaml is malformed.
        """
        all_profiles = _load_mapping(PROFILES_PATH, "profiles.yaml")
        profiles = all_profiles.get("profiles")
        if not isinstance(profiles, dict):
            raise ValueError(
                f"profiles.yaml needs a 'profiles' mapping. Found keys: {list(all_profiles)}"
            )
        if name not in profiles:
            raise ValueError(f"Unknown profile: {name}. Available: {list(profiles)}")

        data = dict(profiles[name] or {})
        data["profile_name"] = name
        if overrides:
            data = deep_merge(data, overrides)
        return cls(**data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PPOConfig:
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to YAML file."""
        with open(Path(path), "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def summary(self) -> str:
        """Human-readable summary of configuration."""
        lines = [
            f"PPOConfig ({self.profile_name}):",
            f"  PPO: epsilon={self.epsilon}, critic_weight={self.critic_weight}",
            f"  GAE: discount={self.discount}, lambda={self.lam}",
            f"  Base: {'pooled' if self.pool_base else 'recomputed per head'}",
            f"  Targets: {'normalized' if self.normalize_targets else 'raw'}",
            f"  Input tape: {self.input_tape.backend.value}"
            + (
                f" (level={self.input_tape.compression_level}, "
                f"checkpoint={self.input_tape.checkpoint_interval}, "
                f"uint8={self.input_tape.quantize_uint8})"
                if self.input_tape.backend is TapeBackend.COMPRESSED
                else ""
            ),
        ]
        return "\n".join(lines)


__all__ = ["PPOConfig", "TapeConfig", "deep_merge"]
