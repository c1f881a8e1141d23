"""
Parameter checkpoints built on the flatten/replace protocol.

A checkpoint is the flattened parameter list of a model, detached and moved
to CPU. Loading re-threads it into a model of the same structure, so a
checkpoint taken from a differently shaped model fails with the protocol's
count errors.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, TypeVar

import torch

from .parameters import flatten_parameters, make_independent, replace_parameters

__all__ = ["save_parameters", "load_parameters"]

T = TypeVar("T")


def save_parameters(model: Any, path: Path | str) -> Path:
    path = Path(path)
    snapshot = [param.detach().cpu() for param in flatten_parameters(model)]
    _atomic_save(snapshot, path)
    return path


def load_parameters(
    model: T,
    path: Path | str,
    *,
    device: Optional[torch.device | str] = None,
) -> T:
    tensors = torch.load(Path(path), map_location="cpu")
    if not isinstance(tensors, list) or not all(torch.is_tensor(t) for t in tensors):
        raise TypeError(f"Checkpoint at {path} is not a list of tensors")
    if device is not None:
        tensors = [tensor.to(device) for tensor in tensors]
    return replace_parameters(model, [make_independent(tensor) for tensor in tensors])


def _atomic_save(obj: Any, path: Path) -> None:
    # a crash mid-write leaves the previous checkpoint in place
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    torch.save(obj, tmp_path)
    tmp_path.replace(path)
