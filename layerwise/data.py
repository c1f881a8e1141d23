"""
Deterministic seeding and MNIST loading/batching for the training example.
"""

from __future__ import annotations

import gzip
import random
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import torch

__all__ = [
    "MnistData",
    "iter_batches",
    "load_mnist",
    "seed_rng",
    "set_default_seed",
]


_DEFAULT_SEED = 123

_IMAGE_MAGIC = 2051
_LABEL_MAGIC = 2049

MNIST_FILES = {
    "train_images": "train-images-idx3-ubyte",
    "train_labels": "train-labels-idx1-ubyte",
    "test_images": "t10k-images-idx3-ubyte",
    "test_labels": "t10k-labels-idx1-ubyte",
}


def set_default_seed(seed: int) -> None:
    global _DEFAULT_SEED
    _DEFAULT_SEED = seed


def seed_rng(seed: Optional[int] = None) -> int:
    """
    Seed Python, numpy and torch so layer sampling and batch shuffling repeat
    across runs. Returns the seed used, the package default when none is given.
    """
    actual_seed = _DEFAULT_SEED if seed is None else seed
    random.seed(actual_seed)
    np.random.seed(actual_seed)
    torch.manual_seed(actual_seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(actual_seed)
    return actual_seed


@dataclass(frozen=True, eq=False)
class MnistData:
    images: np.ndarray  # uint8, [N, rows * cols]
    labels: np.ndarray  # uint8, [N]

    def __len__(self) -> int:
        return int(self.labels.shape[0])


def load_mnist(root: Path | str) -> tuple[MnistData, MnistData]:
    """
    Read the four MNIST IDX files (raw or ``.gz``) under ``root``.
    """
    root = Path(root)
    train = MnistData(
        images=_read_images(_locate(root, MNIST_FILES["train_images"])),
        labels=_read_labels(_locate(root, MNIST_FILES["train_labels"])),
    )
    test = MnistData(
        images=_read_images(_locate(root, MNIST_FILES["test_images"])),
        labels=_read_labels(_locate(root, MNIST_FILES["test_labels"])),
    )
    for name, split in (("train", train), ("test", test)):
        if split.images.shape[0] != split.labels.shape[0]:
            raise ValueError(
                f"MNIST {name} split has {split.images.shape[0]} images "
                f"but {split.labels.shape[0]} labels"
            )
    return train, test


def iter_batches(
    data: MnistData,
    batch_size: int,
    *,
    shuffle: bool = True,
    seed: Optional[int] = None,
    device: Optional[torch.device | str] = None,
    start_iteration: int = 0,
) -> Iterator[tuple[torch.Tensor, torch.Tensor, int]]:
    """
    Yield ``(images, labels, iteration)`` with images scaled to ``[0, 1]``.

    The last partial batch is dropped.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be a positive integer")
    order = np.arange(len(data))
    if shuffle:
        rng = np.random.default_rng(_DEFAULT_SEED if seed is None else seed)
        rng.shuffle(order)
    for iteration, start in enumerate(
        range(0, len(order) - batch_size + 1, batch_size), start=start_iteration
    ):
        index = order[start : start + batch_size]
        images = torch.from_numpy(data.images[index].astype(np.float32) / 255.0)
        labels = torch.from_numpy(data.labels[index].astype(np.int64))
        if device is not None:
            images = images.to(device)
            labels = labels.to(device)
        yield images, labels, iteration


def _locate(root: Path, name: str) -> Path:
    for candidate in (root / name, root / f"{name}.gz"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError(f"MNIST file '{name}' not found under {root}")


def _read_bytes(path: Path) -> bytes:
    if path.suffix == ".gz":
        with gzip.open(path, "rb") as fh:
            return fh.read()
    return path.read_bytes()


def _read_header(raw: bytes, path: Path, expected_magic: int, ndim: int) -> tuple[int, ...]:
    header_size = 4 * (ndim + 1)
    if len(raw) < header_size:
        raise ValueError(f"IDX file {path} is truncated ({len(raw)} bytes)")
    header = np.frombuffer(raw, dtype=">u4", count=ndim + 1)
    if int(header[0]) != expected_magic:
        raise ValueError(
            f"IDX file {path} has magic number {int(header[0])}, expected {expected_magic}"
        )
    dims = tuple(int(d) for d in header[1:])
    if len(raw) - header_size != int(np.prod(dims)):
        raise ValueError(f"IDX file {path} payload does not match its dimensions {dims}")
    return dims


def _read_images(path: Path) -> np.ndarray:
    raw = _read_bytes(path)
    count, rows, cols = _read_header(raw, path, _IMAGE_MAGIC, 3)
    pixels = np.frombuffer(raw, dtype=np.uint8, offset=16)
    return pixels.reshape(count, rows * cols)


def _read_labels(path: Path) -> np.ndarray:
    raw = _read_bytes(path)
    _read_header(raw, path, _LABEL_MAGIC, 1)
    return np.frombuffer(raw, dtype=np.uint8, offset=8)
