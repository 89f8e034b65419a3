"""
Snapshot export: nearest-neighbour rescaling of rendered slices and PNG output.
"""

import os
import logging
from typing import Tuple
import numpy as np
import SimpleITK as sitk

from .config import EXPORT_TARGET_SIZE
from .slice_projector import SliceRender, ViewSpec, render_slice

logger = logging.getLogger(__name__)


def output_shape(render: SliceRender, target_size: int = EXPORT_TARGET_SIZE) -> Tuple[int, int]:
    """(height, width) of the exported image

    Zoomed views cover a square physical field of view and are exported
    square. Full views are target_size wide with the height set by the
    physical aspect of the slice (or the data aspect when the render ignored
    voxel anisotropy, since its aspect ratio is then 1).
    """
    if render.zoomed:
        return target_size, target_size
    window = render.window
    height = int(round(target_size * window.height * render.aspect_ratio / window.width))
    return max(height, 1), target_size


def resample_nearest(rgba: np.ndarray, height: int, width: int) -> np.ndarray:
    """Nearest-neighbour resize without smoothing

    Args:
        rgba: (H, W, C) buffer
        height: Output height
        width: Output width

    Returns:
        (height, width, C) buffer
    """
    src_height, src_width = rgba.shape[:2]
    # Sample at output pixel centres
    rows = np.minimum(((np.arange(height) + 0.5) * src_height / height).astype(np.intp), src_height - 1)
    cols = np.minimum(((np.arange(width) + 0.5) * src_width / width).astype(np.intp), src_width - 1)
    return rgba[rows[:, np.newaxis], cols[np.newaxis, :]]


def save_png(rgba: np.ndarray, output_path: str) -> None:
    """Write an RGBA (or RGB) uint8 buffer as PNG"""
    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    image = sitk.GetImageFromArray(np.ascontiguousarray(rgba, dtype=np.uint8), isVector=True)
    sitk.WriteImage(image, output_path)


def export_slice(spec: ViewSpec, output_path: str, target_size: int = EXPORT_TARGET_SIZE) -> Tuple[int, int]:
    """Render a slice, scale it for export and save it as PNG

    Returns:
        (height, width) of the written image
    """
    render = render_slice(spec)
    height, width = output_shape(render, target_size)
    save_png(resample_nearest(render.rgba, height, width), output_path)
    logger.debug(f"Saved {render.axis.name.lower()} slice ({width}x{height}) to {output_path}")
    return height, width
