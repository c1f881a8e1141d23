from __future__ import annotations

from pathlib import Path

import pytest
import torch

from layerwise import LinearSpec, NotEnoughParametersError, UnconsumedParametersError
from layerwise.serialize import load_parameters, save_parameters


def test_checkpoint_round_trip(tmp_path: Path) -> None:
    model = (LinearSpec(4, 3).sample(), LinearSpec(3, 2).sample())
    path = save_parameters(model, tmp_path / "ckpt" / "params.pt")

    fresh = (LinearSpec(4, 3).sample(), LinearSpec(3, 2).sample())
    restored = load_parameters(fresh, path)

    for original, loaded in zip(
        (model[0].weight, model[0].bias, model[1].weight, model[1].bias),
        (restored[0].weight, restored[0].bias, restored[1].weight, restored[1].bias),
    ):
        assert torch.equal(original.detach(), loaded.detach())
        assert loaded.requires_grad
    assert not (tmp_path / "ckpt" / "params.pt.tmp").exists()


def test_checkpoint_structure_mismatch(tmp_path: Path) -> None:
    path = save_parameters(LinearSpec(2, 2).sample(), tmp_path / "one.pt")

    with pytest.raises(NotEnoughParametersError):
        load_parameters((LinearSpec(2, 2).sample(), LinearSpec(2, 2).sample()), path)
    with pytest.raises(UnconsumedParametersError):
        load_parameters([], path)


def test_checkpoint_must_hold_tensors(tmp_path: Path) -> None:
    path = tmp_path / "bad.pt"
    torch.save({"weight": torch.zeros(1)}, path)

    with pytest.raises(TypeError, match="not a list of tensors"):
        load_parameters(LinearSpec(1, 1).sample(), path)
