"""
Training loop folding optimizer steps over a stream of batches.

Each step computes a loss, asks the optimizer for new parameter values via
``run_step`` and rebuilds the model with ``replace_parameters``; the model
value passed in is never mutated.
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import torch

from .optim import Optimizer, run_step
from .parameters import replace_parameters

__all__ = ["TrainResult", "accuracy", "train", "write_metrics"]


LossFn = Callable[[Any, torch.Tensor, torch.Tensor], torch.Tensor]
Batch = tuple[torch.Tensor, torch.Tensor, int]


@dataclass
class TrainResult:
    model: Any
    optimizer: Optimizer
    history: list[dict[str, float]] = field(default_factory=list)
    steps: int = 0
    elapsed_s: float = 0.0

    def summary(self) -> dict[str, Any]:
        final_loss = self.history[-1]["loss"] if self.history else None
        return {
            "steps": self.steps,
            "elapsed_s": self.elapsed_s,
            "steps_per_s": self.steps / self.elapsed_s if self.elapsed_s > 0 else float("inf"),
            "final_loss": final_loss,
            "history": self.history,
        }


def train(
    model: Any,
    batches: Iterable[Batch],
    *,
    loss_fn: LossFn,
    optimizer: Optimizer,
    lr: float,
    log_every: int = 50,
) -> TrainResult:
    """
    Run one optimizer step per batch.

    Parameters
    ----------
    model:
        Any ``Parameterized`` model value.
    batches:
        Iterable of ``(inputs, targets, iteration)``.
    loss_fn:
        ``loss_fn(model, inputs, targets)`` returning a scalar tensor.
    log_every:
        Print ``Iteration: n | Loss: x`` whenever ``iteration % log_every == 0``.
    """
    if log_every <= 0:
        raise ValueError("log_every must be a positive integer")

    result = TrainResult(model=model, optimizer=optimizer)
    start_time = time.perf_counter()
    for inputs, targets, iteration in batches:
        loss = loss_fn(result.model, inputs, targets)
        if loss.dim() != 0:
            raise ValueError(f"loss_fn must return a scalar (got shape {tuple(loss.shape)})")
        loss_value = float(loss.detach().item())
        if iteration % log_every == 0:
            print(f"Iteration: {iteration} | Loss: {loss_value:.4f}")
            result.history.append({"iteration": iteration, "loss": loss_value})
        new_params, result.optimizer = run_step(result.model, result.optimizer, loss, lr)
        result.model = replace_parameters(result.model, new_params)
        result.steps += 1
    result.elapsed_s = time.perf_counter() - start_time
    return result


def accuracy(
    predict: Callable[[torch.Tensor], torch.Tensor],
    batches: Iterable[Batch],
) -> float:
    """Fraction of samples where ``argmax(predict(inputs), dim=1)`` equals the target."""
    correct = 0
    total = 0
    with torch.no_grad():
        for inputs, targets, _ in batches:
            predicted = predict(inputs).argmax(dim=1)
            correct += int((predicted == targets).sum().item())
            total += int(targets.numel())
    if total == 0:
        raise ValueError("accuracy requires at least one batch")
    return correct / total


def write_metrics(path: Path | str, metrics: dict[str, Any]) -> Path:
    metrics_path = Path(path)
    metrics_path.parent.mkdir(parents=True, exist_ok=True)
    metrics_path.write_text(json.dumps(metrics, indent=2))
    return metrics_path
