"""Exceptions raised by the OCR front end."""

from typing import Optional


class OcrError(Exception):
    """Base class for every error raised by this package."""
    pass


class InvalidInputError(OcrError, ValueError):
    """Caller supplied an image that cannot be processed.

    Attributes:
        index: Position of the offending image in the caller's list, or
            None when the error is not tied to one image.
    """

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index

    def __str__(self):
        message = super().__str__()
        if self.index is None:
            return message
        return f"image[{self.index}]: {message}"


class UnsupportedFormatError(InvalidInputError):
    """Channel count is not one of the allowed values."""
    pass


class ImagePreprocessError(InvalidInputError):
    """Resizing or normalizing a single image failed."""
    pass


class LabelIndexOutOfRangeError(OcrError, IndexError):
    """Decoder produced a class index the label table cannot map.

    This means the model and the label file do not belong together.
    """

    def __init__(self, index: int, label_count: int):
        super().__init__(
            f"class index {index} out of range for {label_count} labels, "
            f"OCR model or labels not matched?"
        )
        self.index = index
        self.label_count = label_count


class ConfigurationError(OcrError, ValueError):
    """Invalid batch size, model shape or threshold."""
    pass


class BackendFailure(OcrError, RuntimeError):
    """Inference runtime failed or returned an unexpected output."""
    pass
