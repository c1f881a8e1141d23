"""
Standard layers and the specifications they are sampled from.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

import torch
import torch.nn.functional as F

from .forward import HasForward
from .init import FAN_IN, calculate_fan, kaiming_uniform
from .parameters import Parameter, Parameterized, make_independent, to_dependent
from .randomness import Generator, GeneratorStep

__all__ = [
    "Randomizable",
    "sample",
    "LinearSpec",
    "Linear",
    "linear",
    "Conv2dSpec",
    "Conv2d",
    "conv2d_forward",
    "DropoutSpec",
    "Dropout",
]


_KAIMING_SLOPE = math.sqrt(5.0)


class Randomizable:
    """
    A specification that can be sampled into a freshly initialized model.
    """

    def sample(self, *, generator: Optional[torch.Generator] = None) -> Any:
        raise NotImplementedError


def sample(spec: Randomizable, *, generator: Optional[torch.Generator] = None) -> Any:
    return spec.sample(generator=generator)


# ---- Linear ----


@dataclass(frozen=True)
class LinearSpec(Randomizable):
    in_features: int
    out_features: int

    def sample(self, *, generator: Optional[torch.Generator] = None) -> Linear:
        weight, bias = _sample_weight_and_bias(
            [self.out_features, self.in_features],
            generator=generator,
        )
        return Linear(weight=weight, bias=bias)


@dataclass(frozen=True, eq=False)
class Linear(Parameterized, HasForward):
    weight: Parameter
    bias: Parameter

    def forward(self, input: torch.Tensor) -> torch.Tensor:
        return linear(self, input)


def linear(layer: Linear, input: torch.Tensor) -> torch.Tensor:
    """``input @ weight.T + bias``."""
    return F.linear(input, to_dependent(layer.weight), to_dependent(layer.bias))


# ---- Conv2d ----


@dataclass(frozen=True)
class Conv2dSpec(Randomizable):
    input_channels: int
    output_channels: int
    kernel_height: int
    kernel_width: int
    stride: tuple[int, int] = (1, 1)
    padding: tuple[int, int] = (0, 0)

    def sample(self, *, generator: Optional[torch.Generator] = None) -> Conv2d:
        weight, bias = _sample_weight_and_bias(
            [
                self.output_channels,
                self.input_channels,
                self.kernel_height,
                self.kernel_width,
            ],
            generator=generator,
        )
        return Conv2d(
            weight=weight,
            bias=bias,
            stride=tuple(self.stride),
            padding=tuple(self.padding),
        )


@dataclass(frozen=True, eq=False)
class Conv2d(Parameterized, HasForward):
    weight: Parameter
    bias: Parameter
    stride: tuple[int, int] = (1, 1)
    padding: tuple[int, int] = (0, 0)

    def forward(self, input: torch.Tensor) -> torch.Tensor:
        return conv2d_forward(self, self.stride, self.padding, input)


def conv2d_forward(
    layer: Conv2d,
    stride: tuple[int, int],
    padding: tuple[int, int],
    input: torch.Tensor,
) -> torch.Tensor:
    return F.conv2d(
        input,
        to_dependent(layer.weight),
        to_dependent(layer.bias),
        stride=tuple(stride),
        padding=tuple(padding),
    )


# ---- Dropout ----


@dataclass(frozen=True)
class DropoutSpec(Randomizable):
    p: float = 0.5

    def sample(self, *, generator: Optional[torch.Generator] = None) -> Dropout:
        return Dropout(p=self.p)


@dataclass(frozen=True)
class Dropout(Parameterized, HasForward):
    """
    Zeroes each element with probability ``p`` and rescales the rest.

    Draws come from the threaded :class:`Generator`; with ``train=False`` or
    ``p == 0`` the input and the generator pass through unchanged.
    """

    p: float = 0.5
    train: bool = True

    def __post_init__(self) -> None:
        if not 0.0 <= self.p <= 1.0:
            raise ValueError(f"Dropout probability must be in [0, 1] (got {self.p})")

    def forward(self, input: torch.Tensor) -> GeneratorStep[torch.Tensor]:
        def _step(generator: Generator) -> tuple[torch.Tensor, Generator]:
            if not self.train or self.p == 0.0:
                return input, generator
            if self.p == 1.0:
                return torch.zeros_like(input), generator
            keep, generator = generator.run(
                lambda source: torch.rand(input.shape, generator=source, device=source.device)
                >= self.p
            )
            keep = keep.to(device=input.device, dtype=input.dtype)
            return input * keep / (1.0 - self.p), generator

        return _step


def _sample_weight_and_bias(
    shape: list[int],
    *,
    generator: Optional[torch.Generator],
) -> tuple[Parameter, Parameter]:
    weight = kaiming_uniform(
        shape,
        a=_KAIMING_SLOPE,
        mode=FAN_IN,
        nonlinearity="leaky_relu",
        generator=generator,
    )
    fan_in, _ = calculate_fan(shape)
    bound = 1.0 / math.sqrt(fan_in)
    draw = torch.rand((shape[0],), generator=generator)
    bias = draw * (2.0 * bound) - bound
    return make_independent(weight), make_independent(bias)
