from __future__ import annotations

from typing import Any, Callable, Optional

import pytest
import torch

from layerwise import (
    Dropout,
    Generator,
    GeneratorStep,
    HasForward,
    Linear,
    Randomness,
    RandomnessContractError,
    classify_output,
    forward_contract,
)


def test_generator_run_does_not_mutate_state() -> None:
    g0 = Generator.from_seed(7)
    snapshot = g0.state()

    first, g1 = g0.run(lambda source: torch.rand(3, generator=source))
    again, g1_again = g0.run(lambda source: torch.rand(3, generator=source))

    assert torch.equal(g0.state(), snapshot)
    assert torch.equal(first, again)
    assert g1 == g1_again
    assert g1 != g0


def test_generator_threading_is_sequential() -> None:
    g0 = Generator.from_seed(7)
    _, g1 = g0.run(lambda source: torch.rand(3, generator=source))
    second, _ = g1.run(lambda source: torch.rand(3, generator=source))

    source = torch.Generator()
    source.manual_seed(7)
    torch.rand(3, generator=source)
    expected = torch.rand(3, generator=source)

    assert torch.equal(second, expected)


def test_same_seed_gives_equal_generators() -> None:
    assert Generator.from_seed(1) == Generator.from_seed(1)
    assert Generator.from_seed(1) != Generator.from_seed(2)


def test_classify_deterministic_output() -> None:
    assert classify_output(torch.Tensor) == (Randomness.DETERMINISTIC, torch.Tensor)
    assert classify_output(tuple[int, str]) == (Randomness.DETERMINISTIC, tuple[int, str])


def test_classify_stochastic_output() -> None:
    randomness, output = classify_output(GeneratorStep[torch.Tensor])
    assert randomness is Randomness.STOCHASTIC
    assert output is torch.Tensor

    randomness, output = classify_output(Callable[[Generator], tuple[list[int], Generator]])
    assert randomness is Randomness.STOCHASTIC
    assert output == list[int]


def test_classify_rejects_generator_inside_stochastic_output() -> None:
    with pytest.raises(RandomnessContractError, match="must not contain Generator"):
        classify_output(Callable[[Generator], tuple[tuple[int, Generator], Generator]])


@pytest.mark.parametrize(
    "annotation",
    [
        Generator,
        tuple[torch.Tensor, Generator],
        Optional[Generator],
        Callable[[torch.Tensor], tuple[torch.Tensor, Generator]],
        Callable[[Generator], torch.Tensor],
    ],
)
def test_classify_rejects_misplaced_generator(annotation: Any) -> None:
    with pytest.raises(RandomnessContractError, match="must have a forward pass"):
        classify_output(annotation)


def test_layer_contracts() -> None:
    assert forward_contract(Linear)[0] is Randomness.DETERMINISTIC
    assert forward_contract(Dropout(0.2))[0] is Randomness.STOCHASTIC


def test_misplaced_generator_rejected_at_class_definition() -> None:
    with pytest.raises(RandomnessContractError):

        class Leaky(HasForward):
            def forward(self, input: torch.Tensor) -> tuple[torch.Tensor, Generator]:
                return input, Generator.from_seed(0)


def test_unannotated_forward_is_deterministic() -> None:
    class Plain(HasForward):
        def forward(self, input):
            return input

    assert forward_contract(Plain)[0] is Randomness.DETERMINISTIC


def test_forward_contract_requires_forward() -> None:
    with pytest.raises(TypeError, match="does not define forward"):
        forward_contract(object())


def test_misplaced_generator_rejected_for_locally_defined_output() -> None:
    class Out(tuple):
        pass

    class Leaky(HasForward):
        def forward(self, input: torch.Tensor) -> tuple[Out, Generator]:
            return Out((input,)), Generator.from_seed(0)

    with pytest.raises(RandomnessContractError, match="must have a forward pass"):
        forward_contract(Leaky)
