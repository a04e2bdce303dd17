import string
import threading

import numpy as np
import pytest

LABELS = list(string.ascii_lowercase)


def solid_image(value, height, width, channels=3):
    """Single-colour uint8 image."""
    shape = (height, width) if channels == 1 else (height, width, channels)
    return np.full(shape, value, dtype=np.uint8)


def prob_grid(indices, num_classes, prob=0.9):
    """[time, num_classes] grid whose argmax follows ``indices``."""
    rest = (1.0 - prob) / (num_classes - 1)
    grid = np.full((len(indices), num_classes), rest, dtype=np.float32)
    for t, idx in enumerate(indices):
        grid[t, idx] = prob
    return grid


class PixelCodeBackend:
    """Recognition backend that 'reads' the first pixel of each image's middle row.

    An image filled with value v decodes to LABELS[v - 1], which makes it easy
    to check that results come back to the right input.
    """

    def __init__(self, labels=LABELS, steps=4, scale=2.0, bias=1.0):
        self.num_classes = len(labels) + 2
        self.steps = steps
        self.scale = scale
        self.bias = bias
        self.tensors = []
        self._lock = threading.Lock()

    def infer(self, tensor):
        with self._lock:
            self.tensors.append(tensor.copy())
        out = np.zeros((tensor.shape[0], self.steps, self.num_classes), dtype=np.float32)
        for i in range(tensor.shape[0]):
            pixel = tensor[i, tensor.shape[1] // 2, 0, 0]
            value = int(round((pixel + self.bias) / self.scale * 255))
            out[i] = prob_grid([value] + [0] * (self.steps - 1), self.num_classes)
        return out


class FixedSoftmaxBackend:
    """Classifier backend returning the same [p0, p1] for every call."""

    def __init__(self, p0, p1):
        self.row = np.array([[p0, p1]], dtype=np.float32)
        self.tensors = []

    def infer(self, tensor):
        self.tensors.append(tensor)
        return np.repeat(self.row, tensor.shape[0], axis=0)


@pytest.fixture
def rec_backend():
    return PixelCodeBackend()
