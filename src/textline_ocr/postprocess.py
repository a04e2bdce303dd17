"""Postprocessing modules for OCR outputs."""

import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Union

import cv2
import numpy as np

from .errors import BackendFailure, LabelIndexOutOfRangeError


BLANK_INDEX = 0


@dataclass(frozen=True)
class RecognitionResult:
    """Decoded text of one image.

    ``score`` is the mean probability of the emitted symbols. It is NaN when
    nothing was emitted, so check ``is_empty`` before trusting it.
    """
    text: str
    score: float

    @property
    def is_empty(self) -> bool:
        return not self.text


class LabelTable:
    """Maps CTC class indices to label strings.

    Index 0 is the blank class, 1..K are the labels, K+1 is a space.
    """

    def __init__(self, labels: Sequence[str]):
        self.labels = list(labels)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LabelTable":
        """Read one label per line (UTF-8)."""
        labels = []
        with open(path, "rb") as fin:
            for line in fin.readlines():
                labels.append(line.decode("utf-8").rstrip("\r\n"))
        return cls(labels)

    def __len__(self):
        return len(self.labels)

    def label_for(self, index: int) -> str:
        if 0 < index <= len(self.labels):
            return self.labels[index - 1]
        if index == len(self.labels) + 1:
            return " "
        raise LabelIndexOutOfRangeError(index, len(self.labels))


class CTCLabelDecode:
    """Greedy CTC decoding for text recognition."""

    def __init__(self, label_table: LabelTable):
        self.label_table = label_table

    def __call__(self, preds) -> List[RecognitionResult]:
        """Decode CTC predictions to text.

        Args:
            preds: Prediction array [batch, time, num_classes]

        Returns:
            One RecognitionResult per batch row
        """
        if isinstance(preds, (tuple, list)):
            preds = preds[-1]
        preds = np.asarray(preds)
        if preds.ndim != 3 or preds.shape[2] == 0:
            raise BackendFailure(f"expected [batch, time, classes] output, got shape {preds.shape}")
        return [self.decode_row(row) for row in preds]

    def decode_row(self, row: np.ndarray) -> RecognitionResult:
        """Decode one [time, num_classes] probability grid."""
        preds_idx = row.argmax(axis=1)
        preds_prob = row.max(axis=1)

        chars = []
        score = 0.0
        last_index = BLANK_INDEX
        for n, (index, prob) in enumerate(zip(preds_idx.tolist(), preds_prob.tolist())):
            # only strictly consecutive repeats collapse, a blank in between re-emits
            if index != BLANK_INDEX and not (n > 0 and index == last_index):
                chars.append(self.label_table.label_for(index))
                score += prob
            last_index = index

        if not chars:
            return RecognitionResult("", math.nan)
        return RecognitionResult("".join(chars), score / len(chars))


@dataclass(frozen=True)
class RotationDecision:
    """Whether a text image is upside-down.

    ``confidence`` is the classifier's probability for the 180 degree class.
    """
    should_rotate: bool
    confidence: float

    def rotate_if_should(self, img: np.ndarray) -> np.ndarray:
        """Flip ``img`` by 180 degrees in place when ``should_rotate``."""
        if self.should_rotate:
            # cv2 drops the channel axis of HxWx1 images
            img[...] = cv2.rotate(img, cv2.ROTATE_180).reshape(img.shape)
        return img


class ClsPostProcess:
    """Post-processing for text orientation classification."""

    def __init__(self, threshold: float = 0.75, label_list=None):
        """Initialize classifier post-processor.

        Args:
            threshold: Minimum p(180) to rotate
            label_list: List of labels like ['0', '180']
        """
        self.threshold = threshold
        self.label_list = label_list if label_list else ['0', '180']

    def __call__(self, preds) -> List[RotationDecision]:
        """Convert [batch, 2] softmax rows to rotation decisions."""
        preds = np.asarray(preds)
        if preds.ndim != 2 or preds.shape[1] != 2:
            raise BackendFailure(f"expected [batch, 2] softmax output, got shape {preds.shape}")
        return [
            RotationDecision(bool(p1 >= self.threshold), float(p1))
            for p1 in preds[:, 1].tolist()
        ]

    def label_of(self, decision: RotationDecision) -> str:
        """Label reported for a decision, e.g. '180'."""
        return self.label_list[1] if decision.should_rotate else self.label_list[0]
