"""
Text-line OCR front end

Turns variable-sized text-line images into batched NHWC tensors, runs them
through an inference backend and decodes the output:
- TextRecognizer: aspect-ratio bucketed batching + greedy CTC decoding
- TextClassifier: 0/180 degree orientation decision
- TextLinePipeline: classifier (optional) followed by recognizer
"""

from .config import ClassifierConfig, ModelShape, NormalizeConfig, RecognizerConfig
from .errors import (
    BackendFailure,
    ConfigurationError,
    ImagePreprocessError,
    InvalidInputError,
    LabelIndexOutOfRangeError,
    OcrError,
    UnsupportedFormatError,
)
from .onnx_base import InferenceBackend, ONNXInferenceBase
from .pipeline import LineResult, TextLinePipeline
from .postprocess import CTCLabelDecode, LabelTable, RecognitionResult, RotationDecision
from .text_classifier import TextClassifier
from .text_recognizer import TextRecognizer

__version__ = "0.1.0"
__all__ = [
    "TextRecognizer",
    "TextClassifier",
    "TextLinePipeline",
    "LineResult",
    "ModelShape",
    "NormalizeConfig",
    "RecognizerConfig",
    "ClassifierConfig",
    "CTCLabelDecode",
    "LabelTable",
    "RecognitionResult",
    "RotationDecision",
    "InferenceBackend",
    "ONNXInferenceBase",
    "OcrError",
    "InvalidInputError",
    "UnsupportedFormatError",
    "ImagePreprocessError",
    "LabelIndexOutOfRangeError",
    "ConfigurationError",
    "BackendFailure",
]
