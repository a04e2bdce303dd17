"""Configuration classes for OCR modules."""

import math
import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from .errors import ConfigurationError


def round_up_to_multiple(value: float, multiple: int = 32) -> int:
    """Round ``value`` up to the nearest positive multiple of ``multiple``."""
    return max(int(math.ceil(value / multiple)) * multiple, multiple)


def default_batch_size() -> int:
    return min(8, os.cpu_count() or 1)


def _per_channel(value: Union[float, Sequence[float]], name: str) -> Tuple[float, float, float]:
    if isinstance(value, (int, float)):
        return (float(value),) * 3
    value = tuple(float(v) for v in value)
    if len(value) != 3:
        raise ConfigurationError(f"{name} needs 3 channel values, got {len(value)}")
    return value


@dataclass(frozen=True)
class ModelShape:
    """Input shape of a model, in NHWC terms.

    ``width=None`` means the width is computed per batch. A static width is
    rounded up to the next multiple of 32 so the tensor never needs reshaping.
    """
    height: int = 48
    channels: int = 3
    width: Optional[int] = None

    def __post_init__(self):
        if self.height <= 0:
            raise ConfigurationError(f"model height must be positive, got {self.height}")
        if self.channels != 3:
            raise ConfigurationError(f"only 3-channel models are supported, got {self.channels}")
        if self.width is not None:
            if self.width <= 0:
                raise ConfigurationError(f"static width must be positive, got {self.width}")
            # frozen dataclass, so bypass __setattr__
            object.__setattr__(self, "width", round_up_to_multiple(self.width))

    @property
    def is_static(self) -> bool:
        return self.width is not None


@dataclass(frozen=True)
class NormalizeConfig:
    """Maps raw [0, 255] pixels via ``raw / 255 * scale - bias`` per channel."""
    scale: Tuple[float, float, float] = (2.0, 2.0, 2.0)
    bias: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    def __post_init__(self):
        object.__setattr__(self, "scale", _per_channel(self.scale, "scale"))
        object.__setattr__(self, "bias", _per_channel(self.bias, "bias"))

    @property
    def pad_values(self) -> Tuple[float, float, float]:
        """Normalized value of a black pixel."""
        return tuple(-b for b in self.bias)


@dataclass
class ClassifierConfig:
    """Configuration for text orientation classification stage."""
    cls_image_shape: ModelShape = None  # static width required, e.g. 48x192
    cls_thresh: float = 0.75  # Minimum p(180) to rotate
    label_list: List[str] = None  # e.g., ['0', '180']
    normalize: NormalizeConfig = field(default_factory=NormalizeConfig)
    resize_strategy: str = "crop"  # see RESIZE_STRATEGY_NAMES

    def __post_init__(self):
        if self.cls_image_shape is None:
            self.cls_image_shape = ModelShape(height=48, width=192)
        if not self.cls_image_shape.is_static:
            raise ConfigurationError("classifier shape needs a static width")
        if not 0.0 <= self.cls_thresh <= 1.0:
            raise ConfigurationError(f"cls_thresh must be in [0, 1], got {self.cls_thresh}")
        if self.label_list is None:
            self.label_list = ['0', '180']
        if len(self.label_list) != 2:
            raise ConfigurationError("rotation classifier has exactly 2 labels")
        validate_resize_strategy(self.resize_strategy)


@dataclass
class RecognizerConfig:
    """Configuration for text recognition stage."""
    rec_image_shape: ModelShape = None  # e.g. height 48, dynamic width
    rec_batch_num: Optional[int] = None  # None: min(8, cpu count)
    max_workers: Optional[int] = None  # Threads running chunks, None: auto
    normalize: NormalizeConfig = field(default_factory=NormalizeConfig)
    resize_strategy: str = "pad"  # see RESIZE_STRATEGY_NAMES

    def __post_init__(self):
        if self.rec_image_shape is None:
            self.rec_image_shape = ModelShape(height=48)
        if self.rec_batch_num is None:
            self.rec_batch_num = default_batch_size()
        validate_batch_size(self.rec_batch_num)
        if self.max_workers is not None and self.max_workers <= 0:
            raise ConfigurationError(f"max_workers must be positive, got {self.max_workers}")
        validate_resize_strategy(self.resize_strategy)


def validate_batch_size(batch_size: int) -> int:
    if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size <= 0:
        raise ConfigurationError(f"batch size must be a positive integer, got {batch_size!r}")
    return batch_size


# "pad": keep the whole image, pad right; "crop": center-crop wide images first
RESIZE_STRATEGY_NAMES = ("pad", "crop")


def validate_resize_strategy(name: str) -> str:
    if name not in RESIZE_STRATEGY_NAMES:
        allowed = ", ".join(RESIZE_STRATEGY_NAMES)
        raise ConfigurationError(f"unknown resize strategy {name!r}, allow: {allowed}")
    return name
