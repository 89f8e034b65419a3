"""
Slice extraction and windowing.

Maps a 3D volume plus view parameters (axis, cursor voxel, zoom, voxel
anisotropy, window/level) to a 2D RGBA raster, with optional lesion
outlines and crosshair / ROI box decorations. All functions are pure.
"""

import math
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple, Union
import numpy as np

from .config import (
    CROSSHAIR_COLOR,
    CURRENT_LESION_COLOR,
    DEFAULT_WINDOW_MAX,
    DEFAULT_WINDOW_MIN,
    MASK_THRESHOLD,
    OTHER_LESION_COLOR,
    OUTLINE_COLOR,
    ROI_BOX_COLOR,
)
from .data_structures import Volume

logger = logging.getLogger(__name__)


class ViewAxis(Enum):
    """Anatomical view, named by the voxel axis held fixed"""
    SAGITTAL = 'x'
    CORONAL = 'y'
    AXIAL = 'z'

    @classmethod
    def from_value(cls, value: Union['ViewAxis', str]) -> 'ViewAxis':
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())

    @property
    def fixed_index(self) -> int:
        """Position of the fixed coordinate in an (x, y, z) tuple"""
        return 'xyz'.index(self.value)

    def in_plane_dims(self, dims: Sequence[int]) -> Tuple[int, int]:
        """(width, height) of a full slice"""
        dim_x, dim_y, dim_z = dims
        if self is ViewAxis.SAGITTAL:
            return dim_y, dim_z
        if self is ViewAxis.CORONAL:
            return dim_x, dim_z
        return dim_x, dim_y

    def in_plane_coords(self, voxel_coord: Sequence[int]) -> Tuple[int, int]:
        """(i, j) of a voxel within this view's plane, before the vertical flip"""
        x, y, z = voxel_coord
        if self is ViewAxis.SAGITTAL:
            return y, z
        if self is ViewAxis.CORONAL:
            return x, z
        return x, y

    def aspect_components(self, voxel_size: Sequence[float]) -> Tuple[float, float]:
        """(vertical, horizontal) voxel edge lengths of the plane"""
        dx, dy, dz = voxel_size
        if self is ViewAxis.SAGITTAL:
            return dz, dy
        if self is ViewAxis.CORONAL:
            return dz, dx
        return dy, dx

    def extract_plane(self, data: np.ndarray, coord: int) -> np.ndarray:
        """Slice a (Z, Y, X) array into a (height, width) plane indexed [j, i]

        Equivalent to reading f(i, j) = i + coord*dimX + j*dimX*dimY and its
        sagittal/axial counterparts.
        """
        if self is ViewAxis.SAGITTAL:
            return data[:, :, coord]
        if self is ViewAxis.CORONAL:
            return data[:, coord, :]
        return data[coord, :, :]


@dataclass(frozen=True)
class RenderWindow:
    """Region of the (flipped) full slice that gets rendered"""
    start_i: int
    start_j: int
    width: int
    height: int
    full_width: int
    full_height: int

    def crop(self, plane: np.ndarray) -> np.ndarray:
        return plane[self.start_j:self.start_j + self.height,
                     self.start_i:self.start_i + self.width]


@dataclass
class ViewSpec:
    """Everything needed to render one slice

    Attributes:
        intensity: Intensity Volume or (Z, Y, X) array
        axis: 'x' (sagittal), 'y' (coronal) or 'z' (axial)
        voxel_coord: Cursor voxel (x, y, z)
        mask: Optional lesion mask (binary or labeled) with the same shape
        voxel_size: (dx, dy, dz); taken from the intensity Volume if omitted
        window_min / window_max: Display window, defaults 0 / 1000
        fov_zoom: Zoom factor; renders a square physical field of view
        box_zoom: Zoom factor previewed as an ROI box on a full view
        ignore_aspect_ratio: Treat voxels as square in-plane
        current_lesion_label: Label whose outline is highlighted
        show_mask: Draw lesion outlines when a mask is present
        boundary_mode: 'label' compares dense labels, 'binary' compares foreground
        cursor: 'none', 'crosshair' or 'box'; default is 'box' when box_zoom is set
    """
    intensity: Union[Volume, np.ndarray, None]
    axis: Union[ViewAxis, str]
    voxel_coord: Sequence[int]
    mask: Union[Volume, np.ndarray, None] = None
    voxel_size: Optional[Sequence[float]] = None
    window_min: Optional[float] = None
    window_max: Optional[float] = None
    fov_zoom: Optional[float] = None
    box_zoom: Optional[float] = None
    ignore_aspect_ratio: bool = False
    current_lesion_label: Optional[int] = None
    show_mask: bool = True
    boundary_mode: str = 'label'
    cursor: Optional[str] = None


@dataclass
class SliceRender:
    """Rendered slice: RGBA buffer of shape (height, width, 4) plus its geometry"""
    rgba: np.ndarray
    axis: ViewAxis
    window: RenderWindow
    aspect_ratio: float
    cursor: Tuple[float, float]  # in buffer coordinates
    dims: Tuple[int, int, int]
    zoomed: bool

    def roi_box(self, box_zoom: float) -> Tuple[float, float, float, float]:
        """(left, top, width, height) of the ROI box previewing a zoomed view"""
        box_size = min(self.dims) / box_zoom
        box_w = box_size
        box_h = box_size / self.aspect_ratio
        cx, cy = self.cursor
        return cx - box_w / 2, cy - box_h / 2, box_w, box_h


def pixel_aspect_ratio(axis, voxel_size: Sequence[float], ignore_aspect_ratio: bool = False) -> float:
    """Physical height/width ratio of one in-plane pixel

    Falls back to 1.0 whenever the ratio is not a finite positive number.
    """
    if ignore_aspect_ratio:
        return 1.0
    vertical, horizontal = ViewAxis.from_value(axis).aspect_components(voxel_size)
    try:
        ratio = float(vertical) / float(horizontal)
    except ZeroDivisionError:
        return 1.0
    if not math.isfinite(ratio) or ratio <= 0:
        return 1.0
    return ratio


def cursor_position(axis, dims: Sequence[int], voxel_coord: Sequence[int]) -> Tuple[int, int]:
    """Cursor (cx, cy) in full-slice coordinates, rows flipped superior-up"""
    axis = ViewAxis.from_value(axis)
    _, full_height = axis.in_plane_dims(dims)
    i, j = axis.in_plane_coords(voxel_coord)
    return i, full_height - 1 - j


def compute_render_window(axis, dims: Sequence[int], voxel_coord: Sequence[int],
                          aspect_ratio: float = 1.0, fov_zoom: Optional[float] = None) -> RenderWindow:
    """Region of the slice to render

    Zoomed mode renders a square physical field of view of min(dims)/fov_zoom
    voxels wide, centred on the cursor and clamped inside the slice. Full mode
    renders the whole slice.
    """
    axis = ViewAxis.from_value(axis)
    full_width, full_height = axis.in_plane_dims(dims)

    if not fov_zoom:
        return RenderWindow(0, 0, full_width, full_height, full_width, full_height)
    if fov_zoom < 0:
        raise ValueError(f"Zoom factor must be positive, got {fov_zoom}")

    physical_size = min(dims) / fov_zoom
    width = min(max(math.ceil(physical_size), 1), full_width)
    height = min(max(math.ceil(physical_size / aspect_ratio), 1), full_height)

    cx, cy = cursor_position(axis, dims, voxel_coord)
    start_i = math.floor(cx - width / 2)
    start_j = math.floor(cy - height / 2)
    start_i = max(0, min(full_width - width, start_i))
    start_j = max(0, min(full_height - height, start_j))
    return RenderWindow(start_i, start_j, width, height, full_width, full_height)


def window_intensity(values, window_min: float, window_max: float) -> np.ndarray:
    """Linear window/level to uint8, clamped to [0, 255]"""
    value_range = (window_max - window_min) or 1.0
    scaled = (np.asarray(values, dtype=np.float64) - window_min) / value_range * 255.0
    scaled = np.nan_to_num(scaled, nan=0.0, posinf=255.0, neginf=0.0)
    return np.rint(np.clip(scaled, 0.0, 255.0)).astype(np.uint8)


def lesion_boundaries(mask_plane: np.ndarray, mode: str = 'label') -> np.ndarray:
    """Boolean map of foreground pixels on a lesion outline

    A foreground pixel is on the outline when one of its 4 in-plane
    neighbours is outside the plane, or carries a different label ('label'
    mode) or is background ('binary' mode).
    """
    plane = np.asarray(mask_plane, dtype=np.float64)
    foreground = plane > MASK_THRESHOLD

    if mode == 'label':
        # NaN padding never compares equal, so the plane border is an outline
        labels = np.pad(np.floor(plane + 0.5), 1, constant_values=np.nan)
        center = labels[1:-1, 1:-1]
        differs = ((labels[:-2, 1:-1] != center) | (labels[2:, 1:-1] != center) |
                   (labels[1:-1, :-2] != center) | (labels[1:-1, 2:] != center))
    elif mode == 'binary':
        padded = np.pad(foreground, 1, constant_values=False)
        differs = ~(padded[:-2, 1:-1] & padded[2:, 1:-1] &
                    padded[1:-1, :-2] & padded[1:-1, 2:])
    else:
        raise ValueError(f"Unknown boundary mode: {mode}")

    return foreground & differs


def _as_array(volume) -> Optional[np.ndarray]:
    if volume is None:
        return None
    if isinstance(volume, Volume):
        return volume.data
    return np.asarray(volume)


def _clamp_coord(voxel_coord: Sequence[int], dims: Sequence[int]) -> Tuple[int, int, int]:
    return tuple(int(min(max(int(c), 0), d - 1)) for c, d in zip(voxel_coord, dims))


def render_slice(spec: ViewSpec) -> SliceRender:
    """Render one slice to an RGBA buffer

    Args:
        spec: View specification

    Returns:
        SliceRender with the RGBA buffer, render window, aspect ratio and
        cursor position in buffer coordinates
    """
    data = _as_array(spec.intensity)
    if data is None:
        raise ValueError("An intensity volume is required to render a slice")
    if data.ndim != 3:
        raise ValueError(f"Intensity volume must be 3D, got shape {data.shape}")

    mask = _as_array(spec.mask) if spec.show_mask else None
    if mask is not None and mask.shape != data.shape:
        raise ValueError(f"Mask shape {mask.shape} does not match volume shape {data.shape}")

    axis = ViewAxis.from_value(spec.axis)
    dim_z, dim_y, dim_x = data.shape
    dims = (dim_x, dim_y, dim_z)

    voxel_size = spec.voxel_size
    if voxel_size is None:
        voxel_size = spec.intensity.voxel_size if isinstance(spec.intensity, Volume) else (1.0, 1.0, 1.0)
    aspect_ratio = pixel_aspect_ratio(axis, voxel_size, spec.ignore_aspect_ratio)

    voxel_coord = _clamp_coord(spec.voxel_coord, dims)
    window = compute_render_window(axis, dims, voxel_coord, aspect_ratio, spec.fov_zoom)
    coord = voxel_coord[axis.fixed_index]
    logger.debug(f"Rendering {axis.name.lower()} slice {coord}: {window}, aspect {aspect_ratio:.3f}")

    # Row j of the output reads source row full_height - 1 - j
    plane = window.crop(axis.extract_plane(data, coord)[::-1, :])
    window_min = DEFAULT_WINDOW_MIN if spec.window_min is None else spec.window_min
    window_max = DEFAULT_WINDOW_MAX if spec.window_max is None else spec.window_max
    gray = window_intensity(plane, window_min, window_max)

    rgba = np.empty((window.height, window.width, 4), dtype=np.uint8)
    rgba[..., :3] = gray[..., np.newaxis]
    rgba[..., 3] = 255

    if mask is not None:
        mask_plane = axis.extract_plane(mask, coord)[::-1, :]
        boundary = window.crop(lesion_boundaries(mask_plane, spec.boundary_mode))
        if spec.current_lesion_label is None:
            rgba[boundary, :3] = OUTLINE_COLOR
        else:
            labels = np.floor(window.crop(mask_plane).astype(np.float64) + 0.5)
            current = boundary & (labels == spec.current_lesion_label)
            rgba[current, :3] = CURRENT_LESION_COLOR
            rgba[boundary & ~current, :3] = OTHER_LESION_COLOR

    cx, cy = cursor_position(axis, dims, voxel_coord)
    render = SliceRender(
        rgba=rgba,
        axis=axis,
        window=window,
        aspect_ratio=aspect_ratio,
        cursor=(cx - window.start_i, cy - window.start_j),
        dims=dims,
        zoomed=bool(spec.fov_zoom)
    )

    cursor = spec.cursor
    if cursor is None:
        cursor = 'box' if spec.box_zoom else 'none'
    if cursor != 'none':
        render.rgba = draw_decorations(render, cursor, spec.box_zoom)
    return render


def _draw_hline(rgba, row, left, right, color):
    height, width = rgba.shape[:2]
    if 0 <= row < height:
        left, right = max(left, 0), min(right, width - 1)
        if left <= right:
            rgba[row, left:right + 1, :3] = color


def _draw_vline(rgba, col, top, bottom, color):
    height, width = rgba.shape[:2]
    if 0 <= col < width:
        top, bottom = max(top, 0), min(bottom, height - 1)
        if top <= bottom:
            rgba[top:bottom + 1, col, :3] = color


def draw_decorations(render: SliceRender, cursor: str = 'crosshair',
                     box_zoom: Optional[float] = None) -> np.ndarray:
    """Overlay the crosshair or ROI box on a copy of the render buffer

    Args:
        render: Rendered slice
        cursor: 'crosshair', 'box' or 'none'
        box_zoom: Zoom factor whose field of view the box previews

    Returns:
        New RGBA buffer
    """
    rgba = render.rgba.copy()
    height, width = rgba.shape[:2]
    cx, cy = render.cursor

    if cursor == 'crosshair':
        _draw_hline(rgba, int(math.floor(cy)), 0, width - 1, CROSSHAIR_COLOR)
        _draw_vline(rgba, int(math.floor(cx)), 0, height - 1, CROSSHAIR_COLOR)
    elif cursor == 'box':
        # The box previews a zoomed view, so it only belongs on full views
        if not box_zoom or render.zoomed:
            return rgba
        left, top, box_w, box_h = render.roi_box(box_zoom)
        x0, y0 = int(math.floor(left)), int(math.floor(top))
        x1, y1 = int(math.ceil(left + box_w)) - 1, int(math.ceil(top + box_h)) - 1
        _draw_hline(rgba, y0, x0, x1, ROI_BOX_COLOR)
        _draw_hline(rgba, y1, x0, x1, ROI_BOX_COLOR)
        _draw_vline(rgba, x0, y0, y1, ROI_BOX_COLOR)
        _draw_vline(rgba, x1, y0, y1, ROI_BOX_COLOR)
    elif cursor != 'none':
        raise ValueError(f"Unknown cursor style: {cursor}")
    return rgba
