"""
Command Line Interface for text-line recognition
"""

import argparse
import logging
import math
import sys
from pathlib import Path

import cv2
import numpy as np

from .config import ClassifierConfig, ModelShape, RecognizerConfig
from .errors import OcrError
from .pipeline import TextLinePipeline
from .text_classifier import TextClassifier
from .text_recognizer import TextRecognizer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="textline-ocr",
        description="Recognize text in pre-cropped text-line images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Recognize two line images
  textline-ocr rec.onnx dict.txt line1.png line2.png

  # Fixed 320px input width, batches of 4
  textline-ocr rec.onnx dict.txt lines/*.png --width 320 --batch-size 4

  # Fix upside-down lines first
  textline-ocr rec.onnx dict.txt lines/*.png --cls-model cls.onnx

16-bit images are reduced to 8 bits by keeping the high byte.
        """
    )

    # Models
    parser.add_argument('model', type=str, help='Recognition ONNX model')
    parser.add_argument('dict', type=str, help='Character dictionary, one label per line')
    parser.add_argument('images', nargs='+', help='Text line image files')

    # Recognition options
    parser.add_argument(
        '--height',
        type=int,
        default=48,
        help='Model input height (default: 48)'
    )
    parser.add_argument(
        '--width',
        type=int,
        default=None,
        help='Static input width, rounded up to a multiple of 32 (default: dynamic)'
    )
    parser.add_argument(
        '--batch-size',
        type=int,
        default=None,
        help='Images per batch (default: min(8, CPU count))'
    )

    # Classification options
    parser.add_argument(
        '--cls-model',
        type=str,
        default=None,
        help='Orientation classifier ONNX model (default: no classification)'
    )
    parser.add_argument(
        '--cls-thresh',
        type=float,
        default=0.75,
        help='Probability of 180 degrees needed to flip a line (default: 0.75)'
    )

    # Verbosity
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging'
    )
    return parser


def load_images(paths):
    images = []
    for path in paths:
        img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if img is None:
            raise FileNotFoundError(f"Cannot read image: {path}")
        if img.dtype == np.uint16:
            # 16-bit PNG/TIFF: keep the high byte
            img = (img >> 8).astype(np.uint8)
        images.append(img)
    return images


def format_score(score: float) -> str:
    return "-" if math.isnan(score) else f"{score:.4f}"


def main(argv=None):
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        rec_config = RecognizerConfig(
            rec_image_shape=ModelShape(height=args.height, width=args.width),
            rec_batch_num=args.batch_size,
        )
        recognizer = TextRecognizer.from_files(args.model, args.dict, rec_config)

        classifier = None
        if args.cls_model:
            classifier = TextClassifier.from_file(
                args.cls_model, ClassifierConfig(cls_thresh=args.cls_thresh)
            )

        pipeline = TextLinePipeline(recognizer, classifier)
        images = load_images(args.images)
        results = pipeline(images, use_cls=classifier is not None)

        for path, result in zip(args.images, results):
            line = f"{Path(path).name}\t{result.text}\t{format_score(result.score)}"
            if result.rotated:
                line += "\t(rotated)"
            print(line)

        return 0

    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        return 130
    except (OcrError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
