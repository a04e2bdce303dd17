"""
Text Recognition Module

Recognizes text from pre-cropped text-line images.
Images are grouped into batches of similar aspect ratio, each batch is padded
to one width, run through the backend and decoded with greedy CTC.
"""

import logging
import os
import threading
from concurrent.futures import CancelledError, ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence, Union

import cv2
import numpy as np

from .config import RecognizerConfig, validate_batch_size
from .errors import BackendFailure, ImagePreprocessError, InvalidInputError
from .onnx_base import ONNXInferenceBase, as_backend
from .postprocess import CTCLabelDecode, LabelTable, RecognitionResult
from .preprocess import (
    RESIZE_STRATEGIES,
    NormalizeImage,
    as_image_array,
    batch_target_width,
    combine_batch,
    describe_shapes,
    to_three_channels,
    validate_image,
)

logger = logging.getLogger(__name__)


class TextRecognizer:
    """Text recognition module with batch processing.

    The backend handle is shared by all chunks of one ``run`` call; see
    ``onnx_base`` for the reentrancy contract.
    """

    def __init__(
        self,
        backend,
        label_table: Union[LabelTable, Sequence[str]],
        config: RecognizerConfig = None,
    ):
        """Initialize text recognizer.

        Args:
            backend: Object with ``infer(nhwc_tensor)`` or a plain callable
                returning [batch, time, num_classes] probabilities
            label_table: Labels for class indices 1..K
            config: Recognizer configuration (uses defaults if None)
        """
        if config is None:
            config = RecognizerConfig()
        if not isinstance(label_table, LabelTable):
            label_table = LabelTable(label_table)

        self.config = config
        self.rec_image_shape = config.rec_image_shape
        self.rec_batch_num = config.rec_batch_num
        self.backend = as_backend(backend)
        self.resize_op = RESIZE_STRATEGIES[config.resize_strategy]
        self.normalize_op = NormalizeImage(config.normalize)
        self.postprocess_op = CTCLabelDecode(label_table)

    @classmethod
    def from_files(
        cls,
        model_path: Union[str, Path],
        char_dict_path: Union[str, Path],
        config: RecognizerConfig = None,
        providers: Optional[List] = None,
    ) -> "TextRecognizer":
        """Build a recognizer from an ONNX model and a dictionary file."""
        backend = ONNXInferenceBase(model_path, providers=providers)
        return cls(backend, LabelTable.from_file(char_dict_path), config)

    def resize_norm_img(self, img: np.ndarray, target_width: int, index: Optional[int] = None) -> np.ndarray:
        """Resize, pad and normalize one image to (model height, target_width, 3)."""
        try:
            img = to_three_channels(img, index)
            resized = self.resize_op(img, self.rec_image_shape.height, target_width)
            return self.normalize_op(resized, index)
        except InvalidInputError:
            raise
        except (cv2.error, ValueError) as e:
            raise ImagePreprocessError(str(e), index) from e

    def run_multi(
        self,
        img_list: List[np.ndarray],
        indices: Optional[List[int]] = None,
    ) -> List[RecognitionResult]:
        """Recognize one batch: preprocess, infer once, decode every row.

        Args:
            img_list: Text line images sharing one batch
            indices: Index reported in errors for each image (default: position
                in ``img_list``)

        Returns:
            One RecognitionResult per image, same order
        """
        if not img_list:
            return []
        if indices is None:
            indices = list(range(len(img_list)))

        img_list = [validate_image(img, idx) for img, idx in zip(img_list, indices)]

        height = self.rec_image_shape.height
        target_width = batch_target_width(img_list, self.rec_image_shape)
        logger.debug("batch %s -> target %dx%d", describe_shapes(img_list), height, target_width)

        norm_img_batch = [
            self.resize_norm_img(img, target_width, idx)
            for img, idx in zip(img_list, indices)
        ]
        tensor = combine_batch(norm_img_batch, height, target_width, self.normalize_op.pad_values)
        del norm_img_batch

        preds = self.backend.infer(tensor)
        rec_result = self.postprocess_op(preds)

        if len(rec_result) != len(img_list):
            raise BackendFailure(
                f"backend returned {len(rec_result)} rows for a batch of {len(img_list)}"
            )
        return rec_result

    def run(
        self,
        img_list: List[np.ndarray],
        batch_size: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[RecognitionResult]:
        """Recognize text in any number of images.

        Images are stable-sorted by aspect ratio, split into chunks of
        ``batch_size`` and each chunk is recognized on its own. Results come
        back in input order whatever order the chunks finish in.

        Args:
            img_list: Text line images (numpy HWC uint8 or PIL)
            batch_size: Images per chunk (default: ``config.rec_batch_num``)
            cancel_event: When set, chunks not yet started are not run and
                ``concurrent.futures.CancelledError`` is raised

        Returns:
            List of RecognitionResult, one per input image
        """
        if not img_list:
            return []

        batch_size = self.rec_batch_num if batch_size is None else validate_batch_size(batch_size)
        img_list = [validate_image(as_image_array(img), i) for i, img in enumerate(img_list)]
        img_num = len(img_list)

        # Sort by aspect ratio so each chunk pads as little as possible
        width_list = [img.shape[1] / float(img.shape[0]) for img in img_list]
        indices = np.argsort(np.array(width_list), kind="stable")
        chunks = [
            indices[beg_img_no:beg_img_no + batch_size].tolist()
            for beg_img_no in range(0, img_num, batch_size)
        ]

        rec_res: List[Optional[RecognitionResult]] = [None] * img_num
        workers = self._worker_count(len(chunks))
        logger.debug("%d images -> %d chunks of <=%d, %d workers", img_num, len(chunks), batch_size, workers)

        if workers == 1:
            for chunk in chunks:
                self._store(rec_res, chunk, self._run_chunk(img_list, chunk, cancel_event))
            return rec_res

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._run_chunk, img_list, chunk, cancel_event)
                for chunk in chunks
            ]
            try:
                for chunk, future in zip(chunks, futures):
                    self._store(rec_res, chunk, future.result())
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

        return rec_res

    __call__ = run

    def recognize_single(self, img: np.ndarray) -> RecognitionResult:
        """Recognize text in a single image."""
        return self.run_multi([as_image_array(img)])[0]

    def _worker_count(self, chunk_count: int) -> int:
        if self.config.max_workers is not None:
            return min(self.config.max_workers, chunk_count)
        return max(1, min(chunk_count, os.cpu_count() or 1))

    def _run_chunk(self, img_list, chunk: List[int], cancel_event) -> List[RecognitionResult]:
        if cancel_event is not None and cancel_event.is_set():
            raise CancelledError(f"recognition cancelled before chunk starting at image {chunk[0]}")
        return self.run_multi([img_list[i] for i in chunk], indices=chunk)

    @staticmethod
    def _store(rec_res, chunk, chunk_result):
        for original_idx, result in zip(chunk, chunk_result):
            rec_res[original_idx] = result

    def __repr__(self):
        return (
            f"TextRecognizer(backend={self.backend!r}, height={self.rec_image_shape.height}, "
            f"width={self.rec_image_shape.width or 'dynamic'}, batch={self.rec_batch_num})"
        )
