"""
Text Orientation Classification Module

Decides whether a text-line image is upside-down (0 or 180 degrees).
Flipping is never automatic: call ``run`` or ``RotationDecision.rotate_if_should``.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import cv2
import numpy as np

from .config import ClassifierConfig
from .errors import BackendFailure, ImagePreprocessError, InvalidInputError
from .onnx_base import ONNXInferenceBase, as_backend
from .postprocess import ClsPostProcess, RotationDecision
from .preprocess import RESIZE_STRATEGIES, NormalizeImage, validate_image

logger = logging.getLogger(__name__)


class TextClassifier:
    """Text orientation classification module.

    Images are classified one at a time; classifier inputs are few and small.
    """

    def __init__(self, backend, config: ClassifierConfig = None):
        """Initialize text classifier.

        Args:
            backend: Object with ``infer(nhwc_tensor)`` or a plain callable
                returning [batch, 2] softmax rows
            config: Classifier configuration (uses defaults if None)
        """
        if config is None:
            config = ClassifierConfig()

        self.config = config
        self.cls_image_shape = config.cls_image_shape
        self.cls_thresh = config.cls_thresh
        self.backend = as_backend(backend)
        self.resize_op = RESIZE_STRATEGIES[config.resize_strategy]
        self.normalize_op = NormalizeImage(config.normalize)
        self.postprocess_op = ClsPostProcess(config.cls_thresh, config.label_list)

    @classmethod
    def from_file(
        cls,
        model_path: Union[str, Path],
        config: ClassifierConfig = None,
        providers: Optional[List] = None,
    ) -> "TextClassifier":
        """Build a classifier from an ONNX model (cls.onnx)."""
        return cls(ONNXInferenceBase(model_path, providers=providers), config)

    def resize_norm_img(self, img: np.ndarray, index: Optional[int] = None) -> np.ndarray:
        """Crop, resize, pad and normalize to the classifier shape (H, W, 3)."""
        try:
            resized = self.resize_op(img, self.cls_image_shape.height, self.cls_image_shape.width)
            return self.normalize_op(resized, index)
        except InvalidInputError:
            raise
        except (cv2.error, ValueError) as e:
            raise ImagePreprocessError(str(e), index) from e

    def should_rotate_180(self, img: np.ndarray, index: Optional[int] = None) -> RotationDecision:
        """Decide whether ``img`` should be rotated by 180 degrees.

        Raises:
            InvalidInputError: image is empty
            UnsupportedFormatError: image is not 1 or 3 channels
        """
        img = validate_image(img, index, allowed_channels=(1, 3))
        tensor = self.resize_norm_img(img, index)[np.newaxis, :]

        prob_out = self.backend.infer(tensor)
        decisions = self.postprocess_op(prob_out)
        if len(decisions) != 1:
            raise BackendFailure(f"expected one softmax row, got {len(decisions)}")

        decision = decisions[0]
        logger.debug(
            "orientation %s (p180=%.3f, thresh=%.2f)",
            self.postprocess_op.label_of(decision), decision.confidence, self.cls_thresh,
        )
        return decision

    def should_rotate_180_batch(self, img_list: List[np.ndarray]) -> List[RotationDecision]:
        """Decide independently for every image; errors name the image's index."""
        return [self.should_rotate_180(img, i) for i, img in enumerate(img_list)]

    __call__ = should_rotate_180_batch

    def run(self, img: np.ndarray) -> np.ndarray:
        """Classify ``img`` and flip it in place if it is upside-down."""
        if not isinstance(img, np.ndarray):
            raise InvalidInputError("run flips the image in place and needs a numpy array")
        decision = self.should_rotate_180(img)
        return decision.rotate_if_should(img)

    def __repr__(self):
        return (
            f"TextClassifier(backend={self.backend!r}, "
            f"shape={self.cls_image_shape.height}x{self.cls_image_shape.width}, "
            f"thresh={self.cls_thresh})"
        )
