from __future__ import annotations

import functools
from collections import OrderedDict, namedtuple
from dataclasses import dataclass
from enum import Enum

import pytest
import torch

from layerwise import (
    HasForward,
    Left,
    Linear,
    LinearSpec,
    NotEnoughParametersError,
    Parameter,
    ParameterCountError,
    Parameterized,
    ParamStream,
    Right,
    UnconsumedParametersError,
    flatten_parameters,
    make_independent,
    replace_parameters,
)


class Activation(Enum):
    RELU = "relu"


@dataclass(frozen=True, eq=False)
class Block(Parameterized):
    first: Linear
    scale: float
    mask: torch.Tensor
    activation: Activation
    act_fn: object
    second: Linear


Pair = namedtuple("Pair", ["left", "right"])


def _block() -> Block:
    return Block(
        first=LinearSpec(3, 4).sample(),
        scale=0.5,
        mask=torch.ones(4),
        activation=Activation.RELU,
        act_fn=torch.relu,
        second=LinearSpec(4, 2).sample(),
    )


def _fresh(params: list[Parameter]) -> list[Parameter]:
    return [make_independent(torch.zeros_like(p)) for p in params]


def test_flatten_follows_field_order() -> None:
    block = _block()
    params = flatten_parameters(block)

    assert len(params) == 4
    assert params[0] is block.first.weight
    assert params[1] is block.first.bias
    assert params[2] is block.second.weight
    assert params[3] is block.second.bias


def test_replace_with_own_parameters_is_identity() -> None:
    block = _block()
    params = flatten_parameters(block)

    rebuilt = replace_parameters(block, params)

    assert rebuilt is not block
    assert all(a is b for a, b in zip(flatten_parameters(rebuilt), params))
    assert rebuilt.scale == block.scale
    assert rebuilt.mask is block.mask
    assert rebuilt.activation is Activation.RELU
    assert rebuilt.act_fn is torch.relu


def test_replace_threads_new_values_in_order() -> None:
    block = _block()
    replacements = _fresh(flatten_parameters(block))

    rebuilt = replace_parameters(block, replacements)

    assert rebuilt.first.weight is replacements[0]
    assert rebuilt.first.bias is replacements[1]
    assert rebuilt.second.weight is replacements[2]
    assert rebuilt.second.bias is replacements[3]
    # the original value is untouched
    assert block.first.weight is not replacements[0]


def test_replace_rejects_too_few_parameters() -> None:
    block = _block()
    params = flatten_parameters(block)

    with pytest.raises(NotEnoughParametersError, match="Not enough parameters"):
        replace_parameters(block, params[:-1])
    with pytest.raises(ParameterCountError):
        replace_parameters(block, [])


def test_replace_rejects_leftover_parameters() -> None:
    block = _block()
    params = flatten_parameters(block)
    extra = make_independent(torch.zeros(1))

    with pytest.raises(UnconsumedParametersError, match="haven't been consumed"):
        replace_parameters(block, params + [extra])


def test_leaves_contribute_no_parameters() -> None:
    leaves = [1, 2.5, True, "name", None, torch.ones(3), torch.relu, lambda x: x, Activation.RELU]

    assert flatten_parameters(leaves) == []
    rebuilt = replace_parameters(leaves, [])
    assert all(a is b for a, b in zip(rebuilt, leaves))


def test_containers_are_rebuilt_with_their_type() -> None:
    layers = [LinearSpec(2, 2).sample(), LinearSpec(2, 1).sample()]
    model = {
        "stack": layers,
        "pair": Pair(LinearSpec(1, 1).sample(), 3),
        "tuple": (make_independent(torch.zeros(2)),),
    }
    model = OrderedDict(model)
    params = flatten_parameters(model)
    assert len(params) == 4 + 2 + 1

    replacements = _fresh(params)
    rebuilt = replace_parameters(model, replacements)

    assert isinstance(rebuilt, OrderedDict)
    assert isinstance(rebuilt["stack"], list)
    assert isinstance(rebuilt["pair"], Pair)
    assert rebuilt["pair"].right == 3
    assert isinstance(rebuilt["tuple"], tuple)
    assert all(a is b for a, b in zip(flatten_parameters(rebuilt), replacements))


def test_sum_tags_are_parameterized() -> None:
    layer = LinearSpec(2, 3).sample()
    params = flatten_parameters(Left(layer))

    assert len(params) == 2
    assert params[0] is layer.weight
    assert params[1] is layer.bias
    assert flatten_parameters(Right(4)) == []

    rebuilt = replace_parameters(Left(layer), _fresh(params))
    assert isinstance(rebuilt, Left)
    assert isinstance(rebuilt.value, Linear)


def test_stream_rejects_raw_tensors() -> None:
    layer = LinearSpec(2, 2).sample()

    with pytest.raises(TypeError, match="expected a Parameter"):
        replace_parameters(layer, [torch.zeros(2, 2), torch.zeros(2)])


def test_stream_counts_consumption() -> None:
    params = [make_independent(torch.zeros(1)) for _ in range(3)]
    stream = ParamStream(params)

    assert stream.next_parameter() is params[0]
    assert stream.consumed == 1
    assert stream.remaining == 2


def test_unsupported_values_are_rejected() -> None:
    with pytest.raises(TypeError):
        flatten_parameters({1, 2})
    with pytest.raises(TypeError, match="torch.nn.Module"):
        flatten_parameters(torch.nn.Linear(2, 2))


@dataclass(frozen=True, eq=False)
class Scale(HasForward):
    weight: Parameter

    def forward(self, input: torch.Tensor) -> torch.Tensor:
        return input * self.weight


@dataclass(frozen=True, eq=False)
class ScaledLinear(Parameterized):
    linear: Linear
    scale: Scale


def test_callable_models_must_be_parameterized() -> None:
    model = ScaledLinear(LinearSpec(2, 2).sample(), Scale(make_independent(torch.ones(1))))

    with pytest.raises(TypeError, match="not Parameterized"):
        flatten_parameters(model)
    with pytest.raises(TypeError, match="not Parameterized"):
        replace_parameters(model, flatten_parameters(model.linear))


def test_function_like_callables_are_leaves() -> None:
    leaves = [functools.partial(torch.clamp, min=0.0), torch.nn.functional.relu, Linear, "x".upper]

    assert flatten_parameters(leaves) == []
    assert all(a is b for a, b in zip(replace_parameters(leaves, []), leaves))


def test_non_dataclass_models_must_override() -> None:
    class Opaque(Parameterized):
        pass

    with pytest.raises(TypeError, match="must be a dataclass"):
        flatten_parameters(Opaque())


def test_make_independent_detaches() -> None:
    source = torch.ones(2, requires_grad=True) * 3
    param = make_independent(source)

    assert isinstance(param, Parameter)
    assert param.requires_grad
    assert param.is_leaf
    assert torch.equal(param, source.detach())
