import threading
from concurrent.futures import CancelledError

import numpy as np
import pytest
from PIL import Image

from textline_ocr.config import ModelShape, RecognizerConfig
from textline_ocr.errors import (
    BackendFailure,
    ConfigurationError,
    InvalidInputError,
    UnsupportedFormatError,
)
from textline_ocr.preprocess import crop_resize_pad, resize_pad
from textline_ocr.text_recognizer import TextRecognizer

from conftest import LABELS, PixelCodeBackend, solid_image

# (value, height, width): values pick the label, sizes give varied aspect ratios
SPECS = [
    (3, 32, 300),
    (1, 48, 48),
    (7, 20, 400),
    (2, 40, 90),
    (5, 30, 30),
    (4, 64, 500),
    (6, 25, 100),
]


def make_images(specs=SPECS):
    return [solid_image(value, h, w) for value, h, w in specs]


def expected_text(specs=SPECS):
    return [LABELS[value - 1] for value, _, _ in specs]


def make_recognizer(backend, **config_kwargs):
    return TextRecognizer(backend, LABELS, RecognizerConfig(**config_kwargs))


class TestRunMulti:
    def test_one_result_per_image(self, rec_backend):
        recognizer = make_recognizer(rec_backend)
        results = recognizer.run_multi(make_images())
        assert [r.text for r in results] == expected_text()
        assert all(r.score == pytest.approx(0.9) for r in results)
        assert len(rec_backend.tensors) == 1

    def test_dynamic_width_is_widest_rounded_to_32(self, rec_backend):
        recognizer = make_recognizer(rec_backend)
        recognizer.run_multi([solid_image(1, 32, 100), solid_image(2, 48, 48)])
        tensor = rec_backend.tensors[0]
        # 48 * 100 / 32 = 150 -> 160
        assert tensor.shape == (2, 48, 160, 3)
        assert tensor.dtype == np.float32

    def test_static_width(self, rec_backend):
        recognizer = make_recognizer(rec_backend, rec_image_shape=ModelShape(height=48, width=100))
        results = recognizer.run_multi([solid_image(1, 10, 1000), solid_image(2, 48, 20)])
        assert rec_backend.tensors[0].shape == (2, 48, 128, 3)
        assert [r.text for r in results] == ["a", "b"]

    def test_padding_is_normalized_black(self, rec_backend):
        recognizer = make_recognizer(rec_backend)
        recognizer.run_multi([solid_image(20, 48, 48), solid_image(20, 48, 96)])
        tensor = rec_backend.tensors[0]
        assert tensor.shape == (2, 48, 96, 3)
        np.testing.assert_allclose(tensor[0, :, :48], 20 / 255 * 2 - 1, atol=1e-6)
        np.testing.assert_allclose(tensor[0, :, 48:], -1.0, atol=1e-6)

    def test_resize_strategy_is_configurable(self, rec_backend):
        assert make_recognizer(rec_backend).resize_op is resize_pad
        recognizer = make_recognizer(rec_backend, resize_strategy="crop")
        assert recognizer.resize_op is crop_resize_pad
        assert recognizer.run_multi([solid_image(3, 48, 96)])[0].text == "c"

    def test_empty_image_names_its_index(self, rec_backend):
        recognizer = make_recognizer(rec_backend)
        images = [solid_image(1, 48, 48), np.zeros((0, 10, 3), np.uint8)]
        with pytest.raises(InvalidInputError) as excinfo:
            recognizer.run_multi(images)
        assert excinfo.value.index == 1
        assert rec_backend.tensors == []

        # the sibling on its own is fine
        assert recognizer.run_multi(images[:1])[0].text == "a"

    @pytest.mark.parametrize("channels", [1, 3, 4])
    def test_channel_counts(self, rec_backend, channels):
        recognizer = make_recognizer(rec_backend)
        assert recognizer.recognize_single(solid_image(5, 32, 64, channels)).text == "e"

    def test_bad_channel_count(self, rec_backend):
        recognizer = make_recognizer(rec_backend)
        with pytest.raises(UnsupportedFormatError):
            recognizer.run_multi([np.zeros((8, 8, 2), np.uint8)])

    def test_wrong_row_count_from_backend(self):
        def backend(tensor):
            return np.zeros((tensor.shape[0] + 1, 4, len(LABELS) + 2), np.float32)

        recognizer = make_recognizer(backend)
        with pytest.raises(BackendFailure):
            recognizer.run_multi([solid_image(1, 32, 32)])

    def test_backend_error_propagates_unchanged(self):
        class Boom(Exception):
            pass

        def backend(tensor):
            raise Boom("engine exploded")

        recognizer = make_recognizer(backend)
        with pytest.raises(Boom, match="engine exploded"):
            recognizer.run_multi([solid_image(1, 32, 32)])

    def test_source_images_untouched(self, rec_backend):
        recognizer = make_recognizer(rec_backend)
        images = make_images()
        before = [img.copy() for img in images]
        recognizer.run_multi(images)
        for img, orig in zip(images, before):
            np.testing.assert_array_equal(img, orig)


class TestRun:
    def test_empty_input(self, rec_backend):
        assert make_recognizer(rec_backend).run([]) == []
        assert rec_backend.tensors == []

    @pytest.mark.parametrize("batch_size", [1, 2, 3, 4, 7, 10])
    @pytest.mark.parametrize("max_workers", [1, 4])
    def test_results_in_input_order(self, batch_size, max_workers):
        backend = PixelCodeBackend()
        recognizer = make_recognizer(backend, rec_batch_num=batch_size, max_workers=max_workers)
        results = recognizer.run(make_images())
        assert [r.text for r in results] == expected_text()
        expected_batches = -(-len(SPECS) // batch_size)
        assert len(backend.tensors) == expected_batches

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_order_for_permutations(self, seed):
        order = np.random.default_rng(seed).permutation(len(SPECS))
        specs = [SPECS[i] for i in order]
        recognizer = make_recognizer(PixelCodeBackend(), rec_batch_num=3)
        assert [r.text for r in recognizer(make_images(specs))] == expected_text(specs)

    def test_batches_group_similar_aspect_ratios(self, rec_backend):
        recognizer = make_recognizer(rec_backend, rec_batch_num=2, max_workers=1)
        images = [
            solid_image(1, 10, 200),  # ratio 20
            solid_image(2, 10, 10),   # ratio 1
            solid_image(3, 10, 190),  # ratio 19
            solid_image(4, 10, 11),   # ratio 1.1
        ]
        recognizer.run(images)
        widths = sorted(t.shape[2] for t in rec_backend.tensors)
        # narrow pair padded to 64, wide pair to 960
        assert widths == [64, 960]

    def test_deterministic_across_runs(self):
        results = [
            make_recognizer(PixelCodeBackend(), rec_batch_num=2, max_workers=workers).run(make_images())
            for workers in (1, 3, 3)
        ]
        assert results[0] == results[1] == results[2]

    def test_batch_size_override(self, rec_backend):
        recognizer = make_recognizer(rec_backend, rec_batch_num=1)
        recognizer.run(make_images(), batch_size=4)
        assert len(rec_backend.tensors) == 2

    @pytest.mark.parametrize("batch_size", [0, -3])
    def test_invalid_batch_size(self, rec_backend, batch_size):
        with pytest.raises(ConfigurationError):
            make_recognizer(rec_backend).run(make_images(), batch_size=batch_size)

    def test_empty_image_names_original_index(self, rec_backend):
        images = make_images()
        images[4] = np.zeros((30, 0, 3), np.uint8)
        with pytest.raises(InvalidInputError) as excinfo:
            make_recognizer(rec_backend, rec_batch_num=2).run(images)
        assert excinfo.value.index == 4

    def test_preprocess_error_names_original_index(self, rec_backend):
        images = make_images()
        images[2] = np.zeros((20, 400, 3), np.uint16)
        with pytest.raises(UnsupportedFormatError) as excinfo:
            make_recognizer(rec_backend, rec_batch_num=2).run(images)
        assert excinfo.value.index == 2

    def test_chunk_failure_is_raised(self):
        calls = []

        def backend(tensor):
            calls.append(tensor.shape[0])
            if len(calls) == 2:
                raise RuntimeError("second chunk failed")
            return PixelCodeBackend().infer(tensor)

        recognizer = make_recognizer(backend, rec_batch_num=2, max_workers=1)
        with pytest.raises(RuntimeError, match="second chunk failed"):
            recognizer.run(make_images())
        # sequential run stops at the failing chunk
        assert len(calls) == 2

    def test_cancel_event(self, rec_backend):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(CancelledError):
            make_recognizer(rec_backend, rec_batch_num=2).run(make_images(), cancel_event=cancel)
        assert rec_backend.tensors == []

    def test_pil_input(self, rec_backend):
        images = [
            Image.fromarray(solid_image(3, 32, 80)),
            Image.fromarray(solid_image(9, 32, 40, channels=1)),
        ]
        results = make_recognizer(rec_backend).run(images)
        assert [r.text for r in results] == ["c", "i"]


def test_repr_mentions_shape(rec_backend):
    text = repr(make_recognizer(rec_backend, rec_batch_num=3))
    assert "height=48" in text
    assert "width=dynamic" in text
    assert "batch=3" in text
