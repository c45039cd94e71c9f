"""Shared fixtures: temp storage roots, synthetic source images, a wired delivery gate."""
import os
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

# The module-level app in dynamic_image_style.server reads this at import time
os.environ["DIS_CONFIG"] = str(Path(__file__).parent / "fixtures" / "params.yaml")

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(project_root)

from dynamic_image_style.cache_backends import MemoryCacheBackend
from dynamic_image_style.delivery import DeliveryGate
from dynamic_image_style.generator import DerivativeGenerator
from dynamic_image_style.store import DerivativeStore
from dynamic_image_style.valid_cache import ValidityCache

SAMPLE_ID = "photos/sample.png"


def make_image(width: int = 400, height: int = 300, channels: int = 3) -> np.ndarray:
    """Horizontal/vertical gradients so crops and scales are distinguishable."""
    xs = np.linspace(0, 255, width, dtype=np.float32)[None, :].repeat(height, axis=0)
    ys = np.linspace(0, 255, height, dtype=np.float32)[:, None].repeat(width, axis=1)
    planes = [xs, ys, 255 - xs]
    if channels == 4:
        planes.append(np.full((height, width), 128, dtype=np.float32))
    return np.stack(planes, axis=-1).astype(np.uint8)


@pytest.fixture
def files_root(tmp_path: Path) -> Path:
    root = tmp_path / "files"
    root.mkdir()
    return root


@pytest.fixture
def styles_root(tmp_path: Path) -> Path:
    return tmp_path / "styles"


@pytest.fixture
def sample_source(files_root: Path) -> Path:
    path = files_root / SAMPLE_ID
    path.parent.mkdir(parents=True, exist_ok=True)
    assert cv2.imwrite(str(path), make_image())
    return path


@pytest.fixture
def validity() -> ValidityCache:
    return ValidityCache(MemoryCacheBackend())


@pytest.fixture
def store(files_root: Path, styles_root: Path) -> DerivativeStore:
    return DerivativeStore(str(files_root), str(styles_root), "/styles")


@pytest.fixture
def generator() -> DerivativeGenerator:
    return DerivativeGenerator(webp_quality=80)


@pytest.fixture
def gate(validity, store, generator) -> DeliveryGate:
    return DeliveryGate(validity=validity, store=store, generator=generator)
