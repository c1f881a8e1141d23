"""
Three-layer perceptron classifying MNIST digits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import torch
import torch.nn.functional as F

from layerwise import HasForward, Linear, LinearSpec, Parameterized, Randomizable, linear

INPUT_FEATURES = 784
HIDDEN_FEATURES_0 = 64
HIDDEN_FEATURES_1 = 32
OUTPUT_FEATURES = 10


@dataclass(frozen=True)
class MLPSpec(Randomizable):
    input_features: int = INPUT_FEATURES
    hidden_features_0: int = HIDDEN_FEATURES_0
    hidden_features_1: int = HIDDEN_FEATURES_1
    output_features: int = OUTPUT_FEATURES

    def sample(self, *, generator: Optional[torch.Generator] = None) -> MLP:
        return MLP(
            l0=LinearSpec(self.input_features, self.hidden_features_0).sample(generator=generator),
            l1=LinearSpec(self.hidden_features_0, self.hidden_features_1).sample(generator=generator),
            l2=LinearSpec(self.hidden_features_1, self.output_features).sample(generator=generator),
        )


@dataclass(frozen=True, eq=False)
class MLP(Parameterized, HasForward):
    l0: Linear
    l1: Linear
    l2: Linear

    def forward(self, input: torch.Tensor) -> torch.Tensor:
        return mlp(self, input)


def mlp(model: MLP, input: torch.Tensor) -> torch.Tensor:
    """Log-probabilities over the output classes, shape ``[N, output_features]``."""
    hidden = F.relu(linear(model.l0, input))
    hidden = F.relu(linear(model.l1, hidden))
    return F.log_softmax(linear(model.l2, hidden), dim=1)


def nll_loss(model: MLP, input: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
    return F.nll_loss(mlp(model, input), target)
