"""Inference backends.

The OCR stages only need ``infer(tensor) -> np.ndarray`` with NHWC float32
input. ``ONNXInferenceBase`` is the bundled onnxruntime implementation.

One backend handle is not assumed to be reentrant: ``ONNXInferenceBase``
serializes ``infer`` with a lock. Callers wanting parallel inference should
create one backend per thread.
"""

import logging
import threading
import traceback
from pathlib import Path
from typing import Callable, List, Optional, Union

import numpy as np
import onnxruntime

from .errors import BackendFailure

logger = logging.getLogger(__name__)


class InferenceBackend:
    """Interface of an inference backend."""

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class CallableBackend(InferenceBackend):
    """Adapt a plain ``fn(tensor) -> output`` to the backend interface."""

    def __init__(self, fn: Callable[[np.ndarray], np.ndarray]):
        self.fn = fn

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        return self.fn(tensor)

    def __repr__(self):
        return f"CallableBackend({self.fn!r})"


def as_backend(backend) -> InferenceBackend:
    if isinstance(backend, InferenceBackend) or hasattr(backend, "infer"):
        return backend
    if callable(backend):
        return CallableBackend(backend)
    raise TypeError(f"expected an inference backend or callable, got {type(backend).__name__}")


class ONNXInferenceBase(InferenceBackend):
    """ONNX Runtime session taking NHWC float32 input."""

    def __init__(
        self,
        model_path: Union[str, Path],
        input_layout: str = "NCHW",
        providers: Optional[List] = None,
        num_threads: int = -1,
    ):
        """Initialize ONNX Runtime session.

        Args:
            model_path: Path to ONNX model file
            input_layout: Layout the model expects, 'NCHW' (PaddleOCR
                exports) or 'NHWC'
            providers: Execution providers passed to onnxruntime unchanged
                (default: CPU only)
            num_threads: Intra-op threads (-1 for onnxruntime's default)
        """
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(f"Model not found: {model_path}")
        if input_layout not in ("NCHW", "NHWC"):
            raise ValueError(f"Unknown input_layout: {input_layout}")
        self.input_layout = input_layout

        sess_opt = onnxruntime.SessionOptions()
        sess_opt.log_severity_level = 4
        if num_threads != -1:
            sess_opt.intra_op_num_threads = num_threads

        self.session = onnxruntime.InferenceSession(
            str(self.model_path),
            sess_options=sess_opt,
            providers=providers or ["CPUExecutionProvider"],
        )

        # Cache input/output names
        self.input_names = [node.name for node in self.session.get_inputs()]
        self.output_names = [node.name for node in self.session.get_outputs()]
        self._lock = threading.Lock()
        logger.debug(
            "loaded %s (inputs=%s, outputs=%s, layout=%s)",
            self.model_path.name, self.input_names, self.output_names, input_layout,
        )

    def get_input_feed(self, tensor: np.ndarray) -> dict:
        """Map the NHWC tensor to the model's first input."""
        if self.input_layout == "NCHW":
            tensor = np.ascontiguousarray(tensor.transpose((0, 3, 1, 2)))
        return {self.input_names[0]: tensor}

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        """Run inference and return the primary output.

        Raises:
            BackendFailure: onnxruntime raised while running the model
        """
        input_feed = self.get_input_feed(tensor)
        with self._lock:
            try:
                outputs = self.session.run(self.output_names, input_feed=input_feed)
            except Exception as e:
                raise BackendFailure(traceback.format_exc()) from e
        return outputs[0]

    def __repr__(self):
        return f"ONNXInferenceBase({self.model_path.name!r}, layout={self.input_layout})"
