"""Preprocessing operations for OCR.

All functions take HWC ``uint8`` images (2-D arrays are treated as one
channel) and never modify their input.
"""

import logging
import math
from typing import Dict, List, Optional, Sequence, Union

import cv2
import numpy as np
from PIL import Image

from .config import ModelShape, NormalizeConfig, round_up_to_multiple
from .errors import InvalidInputError, UnsupportedFormatError

logger = logging.getLogger(__name__)

PadValue = Union[float, Sequence[float]]


def as_image_array(image) -> np.ndarray:
    """Return ``image`` as a numpy array, converting PIL images.

    PIL modes L, RGB and RGBA keep their channel count; any other mode is
    converted to RGB first.
    """
    if isinstance(image, Image.Image):
        if image.mode not in ("L", "RGB", "RGBA"):
            image = image.convert("RGB")
        return np.asarray(image)
    if not isinstance(image, np.ndarray):
        raise InvalidInputError(f"expected numpy array or PIL image, got {type(image).__name__}")
    return image


def channel_count(img: np.ndarray) -> int:
    return 1 if img.ndim == 2 else img.shape[2]


def validate_image(
    img: np.ndarray,
    index: Optional[int] = None,
    allowed_channels=(1, 3, 4),
) -> np.ndarray:
    """Check that ``img`` is a non-empty 8-bit image with an allowed channel count."""
    img = as_image_array(img)
    if img.ndim not in (2, 3):
        raise InvalidInputError(f"expected HxW or HxWxC image, got shape {img.shape}", index)
    if img.shape[0] == 0 or img.shape[1] == 0:
        raise InvalidInputError(
            f"size should not be 0, wrong input picture provided? shape={img.shape}", index
        )
    if img.dtype != np.uint8:
        raise UnsupportedFormatError(f"expected uint8 pixels, got {img.dtype}", index)
    channels = channel_count(img)
    if channels not in allowed_channels:
        allowed = "/".join(str(c) for c in allowed_channels)
        raise UnsupportedFormatError(
            f"unexpected channel count: {channels}, allow: ({allowed})", index
        )
    return img


def to_three_channels(img: np.ndarray, index: Optional[int] = None) -> np.ndarray:
    """Convert a 1/3/4 channel image to 3 channels.

    3-channel input is returned as is (no copy), so callers must not write
    into the result.
    """
    img = validate_image(img, index)
    channels = channel_count(img)
    if channels == 4:
        return cv2.cvtColor(img, cv2.COLOR_RGBA2RGB)
    if channels == 1:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    return img


class NormalizeImage:
    """Scale pixel values: ``raw / 255 * scale - bias`` per channel."""

    def __init__(self, config: NormalizeConfig = None):
        if config is None:
            config = NormalizeConfig()
        self.config = config
        self.scale = (np.array(config.scale, dtype=np.float32) / 255.0).reshape((1, 1, 3))
        self.bias = np.array(config.bias, dtype=np.float32).reshape((1, 1, 3))

    @property
    def pad_values(self):
        return self.config.pad_values

    def __call__(self, img: np.ndarray, index: Optional[int] = None) -> np.ndarray:
        img = to_three_channels(img, index)
        return img.astype(np.float32) * self.scale - self.bias


def normalize_image(img: np.ndarray, config: NormalizeConfig = None) -> np.ndarray:
    """Convert ``img`` to a 3-channel float32 buffer in the model's value range."""
    return NormalizeImage(config)(img)


def _border_value(pad_value: PadValue):
    if isinstance(pad_value, (int, float)):
        return (pad_value,) * 3
    return tuple(pad_value)


def _restore_channel_axis(out: np.ndarray, ref: np.ndarray) -> np.ndarray:
    # cv2 drops the trailing axis of single channel images
    if ref.ndim == 3 and out.ndim == 2:
        return out[:, :, np.newaxis]
    return out


def resize_pad(
    img: np.ndarray,
    target_height: int,
    target_width: int,
    pad_value: PadValue = 0,
) -> np.ndarray:
    """Resize keeping the aspect ratio, then pad to exactly target size.

    One scale factor ``min(th / h, tw / w)`` is used for both axes. Missing
    rows are split between top and bottom (odd row at the bottom); missing
    columns all go to the right, so text stays left-anchored for the decoder.
    """
    h, w = img.shape[:2]
    scale = min(target_height / h, target_width / w)
    resized_h = min(target_height, max(1, int(math.ceil(h * scale))))
    resized_w = min(target_width, max(1, int(math.ceil(w * scale))))

    resized = _restore_channel_axis(cv2.resize(img, (resized_w, resized_h)), img)
    border = _border_value(pad_value)

    if resized_h < target_height:
        top = (target_height - resized_h) // 2
        bottom = target_height - resized_h - top
        resized = _restore_channel_axis(
            cv2.copyMakeBorder(resized, top, bottom, 0, 0, cv2.BORDER_CONSTANT, value=border),
            img,
        )
    if resized_w < target_width:
        resized = _restore_channel_axis(
            cv2.copyMakeBorder(
                resized, 0, 0, 0, target_width - resized_w, cv2.BORDER_CONSTANT, value=border
            ),
            img,
        )
    return resized


def crop_resize_pad(
    img: np.ndarray,
    target_height: int,
    target_width: int,
    pad_value: PadValue = 0,
) -> np.ndarray:
    """Resize for the orientation classifier.

    Images wider than the target aspect ratio are center-cropped to it, the
    result is scaled to the target height and right-padded.
    """
    h, w = img.shape[:2]
    wh_ratio = target_width / target_height
    if w / h > wh_ratio:
        crop_w = max(1, int(math.floor(h * wh_ratio)))
        left = (w - crop_w) // 2
        img = img[:, left:left + crop_w]

    scale = target_height / h
    resized_w = min(target_width, max(1, int(math.floor(img.shape[1] * scale))))
    resized = _restore_channel_axis(cv2.resize(img, (resized_w, target_height)), img)

    if resized_w < target_width:
        resized = _restore_channel_axis(
            cv2.copyMakeBorder(
                resized, 0, 0, 0, target_width - resized_w,
                cv2.BORDER_CONSTANT, value=_border_value(pad_value),
            ),
            img,
        )
    return resized


RESIZE_STRATEGIES = {
    "pad": resize_pad,
    "crop": crop_resize_pad,
}


def batch_target_width(images: List[np.ndarray], shape: ModelShape) -> int:
    """Width every image of one batch is padded to.

    Static shapes use their fixed width. Otherwise each image's width at the
    model height is rounded up to a multiple of 32 and the widest one wins.
    """
    if shape.is_static:
        return shape.width
    return max(
        round_up_to_multiple(math.ceil(shape.height * img.shape[1] / img.shape[0]))
        for img in images
    )


def combine_batch(
    images: List[np.ndarray],
    height: int,
    width: int,
    pad_value: PadValue = 0.0,
) -> np.ndarray:
    """Stack equally tall HWC float images into one NHWC tensor.

    The tensor is pre-filled with ``pad_value`` so images narrower than
    ``width`` end up right-padded.
    """
    if not images:
        raise ValueError("combine_batch needs at least one image")

    channels = images[0].shape[2]
    batch = np.empty((len(images), height, width, channels), dtype=np.float32)
    batch[...] = np.asarray(pad_value, dtype=np.float32)

    for i, img in enumerate(images):
        h, w = img.shape[:2]
        if h != height or w > width or img.shape[2] != channels:
            raise ValueError(
                f"images[{i}] has shape {img.shape}, expected ({height}, <={width}, {channels})"
            )
        batch[i, :, :w] = img

    logger.debug("combined %d images into tensor %s", len(images), batch.shape)
    return batch


def describe_shapes(images: List[np.ndarray]) -> Dict[str, int]:
    """Summary used in debug logs."""
    widths = [img.shape[1] for img in images]
    return {"count": len(images), "min_width": min(widths), "max_width": max(widths)}
