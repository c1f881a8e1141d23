"""
Training configuration loaded from a YAML file.

Example::

    data_dir: data
    batch_size: 256
    hidden_features: [64, 32]
    learning_rate: 0.001
    optimizer: gd
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, fields
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional

import torch
import yaml

__all__ = [
    "OPTIMIZERS",
    "TrainConfig",
    "load_train_config",
    "resolve_device",
]


OPTIMIZERS = ("gd", "gdm", "adam")


@dataclass(frozen=True)
class TrainConfig:
    data_dir: str = "data"
    batch_size: int = 256
    input_features: int = 784
    hidden_features: tuple[int, int] = (64, 32)
    output_features: int = 10
    learning_rate: float = 1e-3
    optimizer: str = "gd"
    momentum: float = 0.9
    epochs: int = 1
    log_every: int = 50
    seed: Optional[int] = None
    device: Optional[str] = None
    metrics_path: Optional[str] = None
    checkpoint_path: Optional[str] = None
    raw: Mapping[str, Any] | None = None


def load_train_config(path: Path | str) -> TrainConfig:
    data = _load_config_dict(str(path))
    known = {field.name for field in fields(TrainConfig)} - {"raw"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in training config {path}: {unknown}")

    values: dict[str, Any] = {key: data[key] for key in known if key in data}
    if "hidden_features" in values:
        hidden = values["hidden_features"]
        if not isinstance(hidden, (list, tuple)) or len(hidden) != 2:
            raise ValueError(
                f"hidden_features must be a list of two layer sizes (got {hidden!r})"
            )
        values["hidden_features"] = tuple(int(size) for size in hidden)
    if "learning_rate" in values:
        # YAML 1.1 reads "1e-3" as a string
        try:
            values["learning_rate"] = float(values["learning_rate"])
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"learning_rate must be a number (got {values['learning_rate']!r})"
            ) from exc
    config = TrainConfig(**values, raw=MappingProxyType(copy.deepcopy(data)))
    _validate(config)
    return config


def resolve_device(device: torch.device | str | None) -> torch.device:
    if device is None:
        default = "cuda" if torch.cuda.is_available() else "cpu"
        return torch.device(default)
    return torch.device(device)


def _validate(config: TrainConfig) -> None:
    for name in ("batch_size", "input_features", "output_features", "epochs", "log_every"):
        value = getattr(config, name)
        if not isinstance(value, int) or value <= 0:
            raise ValueError(f"{name} must be a positive integer (got {value!r})")
    if any(size <= 0 for size in config.hidden_features):
        raise ValueError(f"hidden_features must be positive (got {config.hidden_features})")
    if not isinstance(config.learning_rate, (int, float)) or config.learning_rate <= 0:
        raise ValueError(f"learning_rate must be positive (got {config.learning_rate!r})")
    if config.optimizer not in OPTIMIZERS:
        raise ValueError(
            f"Unsupported optimizer '{config.optimizer}' (expected one of {OPTIMIZERS})"
        )


@lru_cache(maxsize=None)
def _load_config_dict(path: str) -> Mapping[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Training config not found at {config_path}")
    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Training config {config_path} must be a mapping (got {type(data)})")
    return data
