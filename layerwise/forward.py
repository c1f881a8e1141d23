"""
Forward-composition algebra over deterministic and stochastic layers.

A product ``(model_a, model_b)`` consumes ``(input_a, input_b)`` and runs
both sides. A sum consumes ``Left((model, input))`` or
``Right((model, input))`` and runs only the selected side. Whenever either
side is stochastic the result is a :data:`~layerwise.randomness.GeneratorStep`
and the generator is threaded left to right.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, get_type_hints

from .parameters import Parameterized
from .randomness import (
    Generator,
    Randomness,
    classify_output,
    forward_contract,
)

__all__ = [
    "HasForward",
    "Left",
    "Right",
    "forward",
    "forward_product",
    "forward_sum",
    "randomness_of",
]


class HasForward:
    """
    Base for models with a ``forward(input)`` contract.

    The return annotation of ``forward`` decides whether the model is
    deterministic or stochastic; a misplaced ``Generator`` is rejected when
    the subclass is defined.
    """

    def forward(self, input: Any) -> Any:
        raise NotImplementedError

    def __call__(self, input: Any) -> Any:
        return self.forward(input)

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        try:
            hints = get_type_hints(cls.forward)
        except NameError:
            # names defined later in the module; forward_contract() checks on first use
            return
        classify_output(hints.get("return", Any))


@dataclass(frozen=True)
class Left(Parameterized):
    value: Any


@dataclass(frozen=True)
class Right(Parameterized):
    value: Any


def randomness_of(model: Any) -> Randomness:
    if _is_product(model):
        model_a, model_b = model
        if Randomness.STOCHASTIC in (randomness_of(model_a), randomness_of(model_b)):
            return Randomness.STOCHASTIC
        return Randomness.DETERMINISTIC
    randomness, _ = forward_contract(model)
    return randomness


def forward(model: Any, input: Any) -> Any:
    if _is_product(model):
        model_a, model_b = model
        input_a, input_b = input
        return forward_product(model_a, input_a, model_b, input_b)
    return model.forward(input)


def forward_product(model_a: Any, input_a: Any, model_b: Any, input_b: Any) -> Any:
    """
    Apply both models.

    Returns ``(out_a, out_b)`` when both are deterministic, otherwise a
    function ``g -> ((out_a, out_b), g')``. With two stochastic sides
    ``model_a`` draws first and ``model_b`` continues from its state.
    """
    randomness_a = randomness_of(model_a)
    randomness_b = randomness_of(model_b)

    if randomness_a is Randomness.DETERMINISTIC and randomness_b is Randomness.DETERMINISTIC:
        return forward(model_a, input_a), forward(model_b, input_b)

    if randomness_b is Randomness.DETERMINISTIC:

        def _stochastic_left(generator: Generator) -> tuple[tuple[Any, Any], Generator]:
            out_a, generator = forward(model_a, input_a)(generator)
            return (out_a, forward(model_b, input_b)), generator

        return _stochastic_left

    if randomness_a is Randomness.DETERMINISTIC:

        def _stochastic_right(generator: Generator) -> tuple[tuple[Any, Any], Generator]:
            out_b, generator = forward(model_b, input_b)(generator)
            return (forward(model_a, input_a), out_b), generator

        return _stochastic_right

    def _stochastic_both(generator: Generator) -> tuple[tuple[Any, Any], Generator]:
        out_a, generator = forward(model_a, input_a)(generator)
        out_b, generator = forward(model_b, input_b)(generator)
        return (out_a, out_b), generator

    return _stochastic_both


def forward_sum(choice: Left | Right, *, other: Any = None) -> Any:
    """
    Apply the model of the selected branch only.

    Parameters
    ----------
    choice:
        ``Left((model, input))`` or ``Right((model, input))``.
    other:
        Model instance or model type of the branch not taken. It is
        classified to decide the shape of the result but never evaluated.

    Returns
    -------
    ``Left(out)`` / ``Right(out)`` when neither branch is stochastic,
    otherwise a function ``g -> (Left(out) | Right(out), g')``. The
    generator passes through untouched when the selected branch is
    deterministic.
    """
    if not isinstance(choice, (Left, Right)):
        raise TypeError(f"forward_sum expects Left or Right, got {type(choice).__name__}")
    tag = type(choice)
    model, input = choice.value

    selected = randomness_of(model)
    stochastic = selected is Randomness.STOCHASTIC
    if other is not None and randomness_of(other) is Randomness.STOCHASTIC:
        stochastic = True

    if not stochastic:
        return tag(forward(model, input))

    if selected is Randomness.DETERMINISTIC:

        def _passthrough(generator: Generator) -> tuple[Left | Right, Generator]:
            return tag(forward(model, input)), generator

        return _passthrough

    def _threaded(generator: Generator) -> tuple[Left | Right, Generator]:
        out, generator = forward(model, input)(generator)
        return tag(out), generator

    return _threaded


def _is_product(model: Any) -> bool:
    return type(model) is tuple and len(model) == 2
