"""
Parameter registry protocol: flatten a model into its learnable tensors and
rebuild a structurally identical model from a replacement list.

Traversal is depth-first in declared field order. A model updated by an
optimizer is never mutated; ``replace_parameters`` returns a new value.
"""

from __future__ import annotations

import dataclasses
import functools
import types
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any, TypeVar

import torch
from torch import nn

__all__ = [
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
]


Parameter = nn.Parameter

T = TypeVar("T")

_LEAF_TYPES = (
    bool,
    int,
    float,
    complex,
    str,
    bytes,
    type(None),
    Enum,
    torch.dtype,
    torch.device,
)

_FUNCTION_TYPES = (
    types.FunctionType,
    types.BuiltinFunctionType,
    types.MethodType,
    functools.partial,
    type,
)


class ParameterCountError(ValueError):
    """The replacement list does not match the model's parameter slots."""


class NotEnoughParametersError(ParameterCountError):
    pass


class UnconsumedParametersError(ParameterCountError):
    pass


def make_independent(tensor: torch.Tensor) -> Parameter:
    """
    Detach ``tensor`` from any autograd graph and track it as a new leaf.
    """
    return nn.Parameter(tensor.detach(), requires_grad=True)


def to_dependent(parameter: Parameter) -> torch.Tensor:
    return parameter


class ParamStream:
    """
    Ordered, consumable sequence of parameters used during reconstruction.
    """

    def __init__(self, params: Iterable[Parameter]) -> None:
        self._items = list(params)
        self._position = 0

    @property
    def consumed(self) -> int:
        return self._position

    @property
    def remaining(self) -> int:
        return len(self._items) - self._position

    def next_parameter(self) -> Parameter:
        if self._position >= len(self._items):
            raise NotEnoughParametersError(
                "Not enough parameters supplied to replace_parameters "
                f"(exhausted after {self._position})"
            )
        item = self._items[self._position]
        if not isinstance(item, Parameter):
            raise TypeError(
                f"Parameter stream item {self._position} is a {type(item).__name__}, "
                "expected a Parameter (see make_independent)"
            )
        self._position += 1
        return item


class Parameterized:
    """
    Mixin for model values.

    The default implementation walks the init fields of a dataclass in
    declaration order. Models that are not dataclasses override
    :meth:`flatten_parameters` and :meth:`rebuild` together.
    """

    def flatten_parameters(self) -> list[Parameter]:
        return [
            param
            for name in self._parameter_fields()
            for param in flatten_parameters(getattr(self, name))
        ]

    def rebuild(self: T, stream: ParamStream) -> T:
        updates = {
            name: _rebuild(getattr(self, name), stream)
            for name in self._parameter_fields()
        }
        return dataclasses.replace(self, **updates)

    def _parameter_fields(self) -> tuple[str, ...]:
        if not dataclasses.is_dataclass(self):
            raise TypeError(
                f"{type(self).__name__} must be a dataclass or override "
                "flatten_parameters() and rebuild()"
            )
        return tuple(field.name for field in dataclasses.fields(self) if field.init)


def flatten_parameters(value: Any) -> list[Parameter]:
    """
    Collect every Parameter reachable from ``value`` in traversal order.
    """
    if isinstance(value, Parameter):
        return [value]
    if isinstance(value, Parameterized):
        return value.flatten_parameters()
    if _is_leaf(value):
        return []
    if isinstance(value, Mapping):
        return [param for item in value.values() for param in flatten_parameters(item)]
    if isinstance(value, (tuple, list)):
        return [param for item in value for param in flatten_parameters(item)]
    raise TypeError(f"Cannot collect parameters from a value of type {type(value).__name__}")


def replace_parameters(value: T, params: Iterable[Parameter]) -> T:
    """
    Rebuild ``value`` with each Parameter slot taken, in traversal order,
    from ``params``.

    Raises
    ------
    NotEnoughParametersError
        ``params`` ran out before every slot was filled.
    UnconsumedParametersError
        ``params`` still had items after the rebuild completed.
    """
    stream = ParamStream(params)
    rebuilt = _rebuild(value, stream)
    if stream.remaining:
        raise UnconsumedParametersError(
            f"Some parameters in a call to replace_parameters haven't been consumed! "
            f"({stream.remaining} left over after {stream.consumed})"
        )
    return rebuilt


def _rebuild(value: Any, stream: ParamStream) -> Any:
    if isinstance(value, Parameter):
        return stream.next_parameter()
    if isinstance(value, Parameterized):
        return value.rebuild(stream)
    if _is_leaf(value):
        return value
    if isinstance(value, Mapping):
        return type(value)((key, _rebuild(item, stream)) for key, item in value.items())
    if isinstance(value, tuple) and hasattr(value, "_fields"):
        return type(value)(*(_rebuild(item, stream) for item in value))
    if isinstance(value, (tuple, list)):
        return type(value)(_rebuild(item, stream) for item in value)
    raise TypeError(f"Cannot replace parameters in a value of type {type(value).__name__}")


def _is_leaf(value: Any) -> bool:
    if torch.is_tensor(value):
        return True
    if isinstance(value, _LEAF_TYPES):
        return True
    if isinstance(value, nn.Module):
        raise TypeError(
            f"{type(value).__name__} is a torch.nn.Module; its parameters are not visible "
            "to flatten_parameters. Wrap them in a Parameterized model instead."
        )
    if isinstance(value, _FUNCTION_TYPES):
        return True
    if callable(value):
        raise TypeError(
            f"{type(value).__name__} is callable but not Parameterized; its parameters would be "
            "invisible to flatten_parameters. Derive it from Parameterized."
        )
    return False
