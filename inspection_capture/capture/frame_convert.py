"""Conversion of OpenCV camera frames into Pillow images and JPEG bytes.

OpenCV delivers frames in BGR (or BGRA) channel order; Pillow expects RGB.
"""

from __future__ import annotations

import logging
from typing import Any

import cv2
import numpy as np
from PIL import Image

from .converter import encode_jpeg

logger = logging.getLogger(__name__)

_logged_shapes: set[tuple[int, str]] = set()


def frame_to_image(frame: Any) -> Image.Image:
    """Convert a BGR/BGRA/grayscale frame into an RGB (or L) Pillow image."""
    array = frame if isinstance(frame, np.ndarray) else np.asarray(frame)
    _log_frame_diagnostics(array)

    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)

    if array.ndim == 2:
        return Image.fromarray(array)

    if array.ndim == 3:
        channels = array.shape[2]
        if channels == 1:
            return Image.fromarray(array[..., 0])
        if channels == 3:
            return Image.fromarray(cv2.cvtColor(array, cv2.COLOR_BGR2RGB))
        if channels == 4:
            return Image.fromarray(cv2.cvtColor(array, cv2.COLOR_BGRA2RGB))

    raise ValueError(f"Unsupported frame shape {array.shape}")


def frame_to_jpeg(frame: Any, quality: float) -> bytes:
    image = frame_to_image(frame)
    try:
        return encode_jpeg(image, quality)
    finally:
        image.close()


def _log_frame_diagnostics(array: np.ndarray) -> None:
    key = (array.ndim, str(array.dtype))
    if key in _logged_shapes:
        return
    logger.debug("frame_to_image ndim=%s shape=%s dtype=%s", array.ndim, array.shape, array.dtype)
    _logged_shapes.add(key)


__all__ = ["frame_to_image", "frame_to_jpeg"]
