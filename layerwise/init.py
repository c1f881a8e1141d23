"""
Fan-based weight initializers.

Every initializer returns a fresh tensor of the requested shape; turning it
into a Parameter is left to the caller (see ``make_independent``).
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Optional

import torch

__all__ = [
    "FAN_IN",
    "FAN_OUT",
    "calculate_fan",
    "calculate_gain",
    "kaiming_uniform",
    "kaiming_normal",
    "xavier_uniform",
    "xavier_normal",
]


FAN_IN = "fan_in"
FAN_OUT = "fan_out"

_LINEAR_GAINS = {
    "linear",
    "identity",
    "conv1d",
    "conv2d",
    "conv3d",
    "sigmoid",
}


def calculate_fan(shape: Sequence[int]) -> tuple[int, int]:
    """
    Return ``(fan_in, fan_out)`` for a weight of ``shape``.

    ``shape`` is ``[out, in, *kernel]``; kernel dimensions multiply both fans.
    """
    if len(shape) < 2:
        raise ValueError(
            f"Fan in/out requires at least a 2-D shape (got {list(shape)})"
        )
    receptive = 1
    for size in shape[2:]:
        receptive *= size
    return shape[1] * receptive, shape[0] * receptive


def calculate_gain(nonlinearity: str, param: Optional[float] = None) -> float:
    if nonlinearity in _LINEAR_GAINS:
        return 1.0
    if nonlinearity == "tanh":
        return 5.0 / 3.0
    if nonlinearity == "relu":
        return math.sqrt(2.0)
    if nonlinearity == "leaky_relu":
        negative_slope = 0.01 if param is None else param
        return math.sqrt(2.0 / (1.0 + negative_slope**2))
    raise ValueError(f"Unsupported nonlinearity '{nonlinearity}'")


def kaiming_uniform(
    shape: Sequence[int],
    *,
    a: float = 0.0,
    mode: str = FAN_IN,
    nonlinearity: str = "leaky_relu",
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    std = calculate_gain(nonlinearity, a) / math.sqrt(_select_fan(shape, mode))
    bound = math.sqrt(3.0) * std
    return _uniform(shape, bound, generator)


def kaiming_normal(
    shape: Sequence[int],
    *,
    a: float = 0.0,
    mode: str = FAN_IN,
    nonlinearity: str = "leaky_relu",
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    std = calculate_gain(nonlinearity, a) / math.sqrt(_select_fan(shape, mode))
    return torch.randn(tuple(shape), generator=generator) * std


def xavier_uniform(
    shape: Sequence[int],
    *,
    gain: float = 1.0,
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    fan_in, fan_out = calculate_fan(shape)
    std = gain * math.sqrt(2.0 / (fan_in + fan_out))
    return _uniform(shape, math.sqrt(3.0) * std, generator)


def xavier_normal(
    shape: Sequence[int],
    *,
    gain: float = 1.0,
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    fan_in, fan_out = calculate_fan(shape)
    std = gain * math.sqrt(2.0 / (fan_in + fan_out))
    return torch.randn(tuple(shape), generator=generator) * std


def _select_fan(shape: Sequence[int], mode: str) -> int:
    fan_in, fan_out = calculate_fan(shape)
    if mode == FAN_IN:
        return fan_in
    if mode == FAN_OUT:
        return fan_out
    raise ValueError(f"Unsupported fan mode '{mode}' (expected '{FAN_IN}' or '{FAN_OUT}')")


def _uniform(
    shape: Sequence[int],
    bound: float,
    generator: Optional[torch.Generator],
) -> torch.Tensor:
    # rand is in [0, 1); rescale to [-bound, bound)
    draw = torch.rand(tuple(shape), generator=generator)
    return draw * (2.0 * bound) - bound
