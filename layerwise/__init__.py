"""
Typed neural-network layers over PyTorch: a parameter flatten/replace
protocol, a forward-composition algebra that threads random-generator state
through stochastic layers, and randomizable layer specifications.
"""

from .forward import HasForward, Left, Right, forward, forward_product, forward_sum, randomness_of
from .layers import (
    Conv2d,
    Conv2dSpec,
    Dropout,
    DropoutSpec,
    Linear,
    LinearSpec,
    Randomizable,
    conv2d_forward,
    linear,
    sample,
)
from .optim import GD, GDM, Adam, Optimizer, run_step
from .parameters import (
    NotEnoughParametersError,
    Parameter,
    ParameterCountError,
    Parameterized,
    ParamStream,
    UnconsumedParametersError,
    flatten_parameters,
    make_independent,
    replace_parameters,
    to_dependent,
)
from .randomness import (
    Generator,
    GeneratorStep,
    Randomness,
    RandomnessContractError,
    classify_output,
    forward_contract,
)

__all__ = [
    # parameters
    "Parameter",
    "ParamStream",
    "Parameterized",
    "ParameterCountError",
    "NotEnoughParametersError",
    "UnconsumedParametersError",
    "make_independent",
    "to_dependent",
    "flatten_parameters",
    "replace_parameters",
    # randomness
    "Randomness",
    "Generator",
    "GeneratorStep",
    "RandomnessContractError",
    "classify_output",
    "forward_contract",
    # composition
    "HasForward",
    "Left",
    "Right",
    "forward",
    "forward_product",
    "forward_sum",
    "randomness_of",
    # layers
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
    # optimizers
    "Optimizer",
    "GD",
    "GDM",
    "Adam",
    "run_step",
]
