"""
High-level text-line pipeline
Combines orientation classification and recognition for pre-cropped lines
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .postprocess import RecognitionResult
from .preprocess import as_image_array, to_three_channels
from .text_classifier import TextClassifier
from .text_recognizer import TextRecognizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineResult:
    """Recognition result of one line plus what the classifier decided."""
    text: str
    score: float
    rotated: bool = False
    rotation_confidence: Optional[float] = None

    @classmethod
    def from_parts(cls, rec: RecognitionResult, decision=None) -> "LineResult":
        if decision is None:
            return cls(rec.text, rec.score)
        return cls(rec.text, rec.score, decision.should_rotate, decision.confidence)


class TextLinePipeline:
    """
    Orientation correction (optional) followed by batched recognition.

    Usage:
        pipeline = TextLinePipeline(recognizer, classifier)
        results = pipeline(line_images)
    """

    def __init__(self, recognizer: TextRecognizer, classifier: Optional[TextClassifier] = None):
        self.text_recognizer = recognizer
        self.text_classifier = classifier

    def __call__(
        self,
        img_list: List[np.ndarray],
        use_cls: bool = True,
        batch_size: Optional[int] = None,
    ) -> List[LineResult]:
        """
        Recognize text lines

        Args:
            img_list: Text line images; never modified, flips happen on copies
            use_cls: Whether to run the orientation classifier
            batch_size: Recognition chunk size (default: recognizer config)

        Returns:
            One LineResult per input image, same order
        """
        if not img_list:
            return []

        if use_cls and self.text_classifier is None:
            logger.warning("angle classifier not initialized, skipping orientation step")
            use_cls = False

        lines = [
            to_three_channels(as_image_array(img), i).copy()
            for i, img in enumerate(img_list)
        ]

        decisions = [None] * len(lines)
        if use_cls:
            decisions = self.text_classifier.should_rotate_180_batch(lines)
            for line, decision in zip(lines, decisions):
                decision.rotate_if_should(line)
            logger.debug("flipped %d of %d lines", sum(d.should_rotate for d in decisions), len(lines))

        rec_res = self.text_recognizer.run(lines, batch_size=batch_size)
        return [LineResult.from_parts(rec, decision) for rec, decision in zip(rec_res, decisions)]

    def __repr__(self):
        return (
            f"TextLinePipeline(\n"
            f"  classifier={self.text_classifier},\n"
            f"  recognizer={self.text_recognizer}\n"
            f")"
        )
