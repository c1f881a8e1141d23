"""
Optimizers as immutable values.

An optimizer step takes the flattened parameters and their gradients and
returns the updated tensors together with the optimizer's next state. The
caller threads the result back into the model with ``replace_parameters``.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import torch

from .parameters import Parameter, flatten_parameters, make_independent

__all__ = [
    "Optimizer",
    "GD",
    "GDM",
    "Adam",
    "gradients",
    "run_step",
]


class Optimizer:
    def step(
        self,
        params: Sequence[torch.Tensor],
        grads: Sequence[torch.Tensor],
        lr: float,
    ) -> tuple[list[torch.Tensor], Optimizer]:
        raise NotImplementedError


@dataclass(frozen=True)
class GD(Optimizer):
    """Plain gradient descent."""

    def step(
        self,
        params: Sequence[torch.Tensor],
        grads: Sequence[torch.Tensor],
        lr: float,
    ) -> tuple[list[torch.Tensor], GD]:
        _check_lengths(params, grads)
        with torch.no_grad():
            updated = [param - lr * grad for param, grad in zip(params, grads)]
        return updated, self


@dataclass(frozen=True, eq=False)
class GDM(Optimizer):
    """Gradient descent with momentum: ``m' = beta * m + g``, ``p' = p - lr * m'``."""

    beta: float
    momenta: tuple[torch.Tensor, ...]

    @classmethod
    def initial(cls, params: Sequence[torch.Tensor], beta: float = 0.9) -> GDM:
        return cls(beta=beta, momenta=tuple(torch.zeros_like(p.detach()) for p in params))

    def step(
        self,
        params: Sequence[torch.Tensor],
        grads: Sequence[torch.Tensor],
        lr: float,
    ) -> tuple[list[torch.Tensor], GDM]:
        _check_lengths(params, grads, self.momenta)
        with torch.no_grad():
            momenta = tuple(self.beta * m + g for m, g in zip(self.momenta, grads))
            updated = [param - lr * m for param, m in zip(params, momenta)]
        return updated, GDM(beta=self.beta, momenta=momenta)


@dataclass(frozen=True, eq=False)
class Adam(Optimizer):
    beta1: float
    beta2: float
    m1: tuple[torch.Tensor, ...]
    m2: tuple[torch.Tensor, ...]
    iteration: int = 0
    eps: float = 1e-8

    @classmethod
    def initial(
        cls,
        params: Sequence[torch.Tensor],
        beta1: float = 0.9,
        beta2: float = 0.999,
    ) -> Adam:
        zeros = tuple(torch.zeros_like(p.detach()) for p in params)
        return cls(beta1=beta1, beta2=beta2, m1=zeros, m2=zeros)

    def step(
        self,
        params: Sequence[torch.Tensor],
        grads: Sequence[torch.Tensor],
        lr: float,
    ) -> tuple[list[torch.Tensor], Adam]:
        _check_lengths(params, grads, self.m1, self.m2)
        t = self.iteration + 1
        bc1 = 1.0 - self.beta1**t
        bc2 = 1.0 - self.beta2**t
        with torch.no_grad():
            m1 = tuple(self.beta1 * m + (1.0 - self.beta1) * g for m, g in zip(self.m1, grads))
            m2 = tuple(self.beta2 * v + (1.0 - self.beta2) * g * g for v, g in zip(self.m2, grads))
            updated = [
                param - lr * (m / bc1) / ((v / bc2).sqrt() + self.eps)
                for param, m, v in zip(params, m1, m2)
            ]
        return updated, Adam(
            beta1=self.beta1,
            beta2=self.beta2,
            m1=m1,
            m2=m2,
            iteration=t,
            eps=self.eps,
        )


def gradients(loss: torch.Tensor, params: Sequence[Parameter]) -> list[torch.Tensor]:
    """
    Gradients of ``loss`` w.r.t. ``params``; parameters the loss does not
    depend on get zeros.
    """
    grads = torch.autograd.grad(loss, list(params), allow_unused=True)
    return [
        torch.zeros_like(param) if grad is None else grad
        for param, grad in zip(params, grads)
    ]


def run_step(
    model: Any,
    optimizer: Optimizer,
    loss: torch.Tensor,
    lr: float,
) -> tuple[list[Parameter], Optimizer]:
    params = flatten_parameters(model)
    if not math.isfinite(lr):
        raise ValueError(f"Learning rate must be finite (got {lr})")
    if not params:
        return [], optimizer
    grads = gradients(loss, params)
    updated, optimizer = optimizer.step(params, grads, lr)
    return [make_independent(tensor) for tensor in updated], optimizer


def _check_lengths(*sequences: Sequence[Any]) -> None:
    lengths = {len(seq) for seq in sequences}
    if len(lengths) > 1:
        raise ValueError(
            f"Optimizer received sequences of mismatched lengths: {sorted(lengths)}"
        )
