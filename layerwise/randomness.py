"""
Random-generator state threaded explicitly through stochastic layers, and
classification of a layer's ``forward`` contract as deterministic or
stochastic from its declared return annotation.
"""

from __future__ import annotations

import builtins
import collections.abc
import inspect
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Tuple, TypeVar, get_args, get_origin, get_type_hints

import torch

__all__ = [
    "Randomness",
    "Generator",
    "GeneratorStep",
    "RandomnessContractError",
    "classify_output",
    "forward_contract",
]


T = TypeVar("T")


class Randomness(Enum):
    DETERMINISTIC = "deterministic"
    STOCHASTIC = "stochastic"


class RandomnessContractError(TypeError):
    """A ``forward`` annotation places ``Generator`` somewhere it cannot be threaded."""


class Generator:
    """
    Immutable snapshot of a random-number source.

    Drawing never mutates a ``Generator``; :meth:`run` hands back the state
    the source reached after the draw.
    """

    __slots__ = ("_state", "_device")

    def __init__(self, state: torch.Tensor, device: torch.device | str = "cpu") -> None:
        self._state = state.clone()
        self._device = torch.device(device)

    @classmethod
    def from_seed(cls, seed: int, *, device: torch.device | str = "cpu") -> Generator:
        source = torch.Generator(device=device)
        source.manual_seed(seed)
        return cls(source.get_state(), device)

    @property
    def device(self) -> torch.device:
        return self._device

    def state(self) -> torch.Tensor:
        return self._state.clone()

    def run(self, fn: Callable[[torch.Generator], T]) -> tuple[T, Generator]:
        source = torch.Generator(device=self._device)
        source.set_state(self._state)
        result = fn(source)
        return result, Generator(source.get_state(), self._device)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Generator):
            return NotImplemented
        return self._device == other._device and torch.equal(self._state, other._state)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Generator(device={self._device})"


GeneratorStep = Callable[[Generator], Tuple[T, Generator]]


def classify_output(annotation: Any) -> tuple[Randomness, Any]:
    """
    Split a ``forward`` return annotation into its randomness and output.

    ``Callable[[Generator], tuple[out, Generator]]`` is stochastic with
    output ``out``; anything else is deterministic. ``Generator`` appearing
    in any other position is rejected.
    """
    step_output = _generator_step_output(annotation)
    if step_output is not None:
        (output,) = step_output
        if _contains(output, Generator):
            raise RandomnessContractError(
                "For stochastic models, the output must not contain Generator in "
                "'forward(input) -> Callable[[Generator], tuple[output, Generator]]' "
                f"(got {annotation!r})"
            )
        return Randomness.STOCHASTIC, output
    if _contains(annotation, Generator):
        raise RandomnessContractError(
            "Stochastic models must have a forward pass of the form "
            "'forward(input) -> Callable[[Generator], tuple[output, Generator]]' "
            f"(got {annotation!r})"
        )
    return Randomness.DETERMINISTIC, annotation


def forward_contract(model: Any) -> tuple[Randomness, Any]:
    """
    Classify the ``forward`` of a model instance or model type.
    """
    model_type = model if isinstance(model, type) else type(model)
    return _contract_for_type(model_type)


@lru_cache(maxsize=None)
def _contract_for_type(model_type: type) -> tuple[Randomness, Any]:
    forward_fn = getattr(model_type, "forward", None)
    if forward_fn is None or not callable(forward_fn):
        raise TypeError(f"{model_type.__name__} does not define forward()")
    return classify_output(_return_annotation(forward_fn))


def _return_annotation(forward_fn: Callable[..., Any]) -> Any:
    try:
        return get_type_hints(forward_fn).get("return", Any)
    except NameError:
        pass
    # names local to a function body: resolve the rest, stand in for the missing ones
    annotation = inspect.get_annotations(forward_fn).get("return", Any)
    if not isinstance(annotation, str):
        return annotation
    globalns = getattr(forward_fn, "__globals__", {})
    try:
        return eval(annotation, dict(globalns), _UnresolvedNames(globalns))
    except TypeError:
        if "Generator" in annotation:
            raise RandomnessContractError(
                f"Cannot resolve the forward annotation {annotation!r} to check where "
                "Generator appears; define the names it uses at module level"
            ) from None
        return annotation


class _UnresolvedNames(dict):
    """Local namespace that stands in a placeholder type for names it cannot find."""

    def __init__(self, globalns: dict[str, Any]) -> None:
        super().__init__()
        self._globalns = globalns

    def __missing__(self, name: str) -> type:
        if name in self._globalns or hasattr(builtins, name):
            raise KeyError(name)
        placeholder = type(name, (), {})
        self[name] = placeholder
        return placeholder


def _generator_step_output(annotation: Any) -> tuple[Any] | None:
    if get_origin(annotation) is not collections.abc.Callable:
        return None
    args = get_args(annotation)
    if len(args) != 2:
        return None
    params, result = args
    if not isinstance(params, (list, tuple)) or list(params) != [Generator]:
        return None
    if get_origin(result) is not tuple:
        return None
    result_args = get_args(result)
    if len(result_args) != 2 or result_args[1] is not Generator:
        return None
    return (result_args[0],)


def _contains(annotation: Any, target: type) -> bool:
    if annotation is target:
        return True
    if isinstance(annotation, (list, tuple)):
        return any(_contains(item, target) for item in annotation)
    return any(_contains(arg, target) for arg in get_args(annotation))
