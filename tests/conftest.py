"""Shared fixtures for image and file lifecycle tests."""

from __future__ import annotations

import random
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from signature_formatter.storage.files import RequestFiles

ImageFactory = Callable[..., Path]


@pytest.fixture
def make_image(tmp_path: Path) -> ImageFactory:
    """Return a factory writing test images into ``tmp_path``."""

    counter = 0

    def _make(
        size: tuple[int, int] = (400, 200),
        *,
        kind: str = "noise",
        mode: str = "RGB",
        fmt: str = "PNG",
        color: tuple[int, ...] = (255, 255, 255),
    ) -> Path:
        nonlocal counter
        counter += 1
        width, height = size
        if kind == "noise":
            rng = random.Random(counter)
            image = Image.frombytes("RGB", size, rng.randbytes(width * height * 3))
            if mode != "RGB":
                image = image.convert(mode)
        else:
            image = Image.new(mode, size, color)
        path = tmp_path / f"source_{counter}.{fmt.lower()}"
        image.save(path, format=fmt)
        return path

    return _make


@pytest.fixture
def request_files(tmp_path: Path) -> RequestFiles:
    dirs = [tmp_path / "uploads", tmp_path / "temp", tmp_path / "output"]
    for directory in dirs:
        directory.mkdir()
    return RequestFiles(*dirs)
