import numpy as np
import pytest
from PIL import Image


def bordered(size=100, border=10, fill=(40, 80, 120), background=(255, 255, 255)):
    arr = np.zeros((size, size, 4), np.uint8)
    arr[..., :3] = background
    arr[..., 3] = 255
    arr[border:size - border, border:size - border, :3] = fill
    return arr


@pytest.fixture
def gradient():
    """64x48 opaque RGB gradient with some structure in both axes."""
    h, w = 48, 64
    ys, xs = np.mgrid[0:h, 0:w]
    arr = np.zeros((h, w, 4), np.uint8)
    arr[..., 0] = (xs * 4) % 256
    arr[..., 1] = (ys * 5) % 256
    arr[..., 2] = ((xs + ys) * 3) % 256
    arr[..., 3] = 255
    return arr


@pytest.fixture
def white():
    arr = np.full((4, 4, 4), 255, np.uint8)
    return arr


@pytest.fixture
def bordered_png(tmp_path):
    path = tmp_path / "framed.png"
    Image.fromarray(bordered(), "RGBA").save(path)
    return path
