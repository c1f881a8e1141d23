"""
Train the MNIST MLP example and print a few test predictions.

Usage::

    python examples/run_mnist.py [path/to/config.yaml]

Expects the four MNIST IDX files (optionally gzipped) under ``data_dir``.
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import torch

from examples.mnist_mlp.model import MLPSpec, mlp, nll_loss
from layerwise import (
    GD,
    GDM,
    Adam,
    flatten_parameters,
    make_independent,
    replace_parameters,
    sample,
)
from layerwise.config import TrainConfig, load_train_config, resolve_device
from layerwise.data import MnistData, iter_batches, load_mnist, seed_rng
from layerwise.optim import Optimizer
from layerwise.serialize import save_parameters
from layerwise.training import accuracy, train, write_metrics

DEFAULT_CONFIG = ROOT / "examples" / "mnist_mlp" / "config.yaml"
SHOWN_TEST_IMAGES = 11


def build_optimizer(config: TrainConfig, params: list[torch.Tensor]) -> Optimizer:
    if config.optimizer == "gdm":
        return GDM.initial(params, beta=config.momentum)
    if config.optimizer == "adam":
        return Adam.initial(params)
    return GD()


def main(config_path: Path | str = DEFAULT_CONFIG) -> None:
    config = load_train_config(config_path)
    seed_used = seed_rng(config.seed)
    device = resolve_device(config.device)

    train_data, test_data = load_mnist(config.data_dir)
    hidden_0, hidden_1 = config.hidden_features
    spec = MLPSpec(config.input_features, hidden_0, hidden_1, config.output_features)
    model = sample(spec)
    if device.type != "cpu":
        model = replace_parameters(
            model, [make_independent(p.to(device)) for p in flatten_parameters(model)]
        )
    optimizer = build_optimizer(config, flatten_parameters(model))

    batches = (
        batch
        for epoch in range(config.epochs)
        for batch in iter_batches(
            train_data,
            config.batch_size,
            seed=seed_used + epoch,
            device=device,
            start_iteration=epoch * (len(train_data) // config.batch_size),
        )
    )
    result = train(
        model,
        batches,
        loss_fn=nll_loss,
        optimizer=optimizer,
        lr=config.learning_rate,
        log_every=config.log_every,
    )
    model = result.model

    test_accuracy = accuracy(
        lambda images: mlp(model, images),
        iter_batches(test_data, config.batch_size, shuffle=False, device=device),
    )
    print(f"Test accuracy: {test_accuracy:.4f}")

    for index in range(SHOWN_TEST_IMAGES):
        image, label = _single(test_data, index, device)
        with torch.no_grad():
            predicted = mlp(model, image).exp().argmax(dim=1)
        print(f"Model        : {predicted.tolist()}")
        print(f"Ground Truth : {label.tolist()}")

    if config.metrics_path:
        metrics = {"seed": seed_used, "test_accuracy": test_accuracy, **result.summary()}
        path = write_metrics(config.metrics_path, metrics)
        print(f"Wrote metrics to {path.resolve()}")
    if config.checkpoint_path:
        path = save_parameters(model, config.checkpoint_path)
        print(f"Wrote parameters to {path.resolve()}")

    print("Done")


def _single(data: MnistData, index: int, device: torch.device) -> tuple[torch.Tensor, torch.Tensor]:
    image = torch.from_numpy(data.images[index : index + 1].astype("float32") / 255.0)
    label = torch.from_numpy(data.labels[index : index + 1].astype("int64"))
    return image.to(device), label.to(device)


if __name__ == "__main__":
    main(*sys.argv[1:2])
