from dataclasses import dataclass, field
from typing import List, Sequence, Tuple
import numpy as np


@dataclass(frozen=True, eq=False)
class Volume:
    """A 3D scalar volume with its voxel geometry.

    The array is stored as (Z, Y, X) in C order, so its flat buffer follows
    index = x + y*dimX + z*dimX*dimY.

    Attributes:
        data: 3D array of shape (dimZ, dimY, dimX)
        voxel_size: Physical edge length of a voxel (dx, dy, dz) in mm
    """
    data: np.ndarray
    voxel_size: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    def __post_init__(self):
        data = np.asarray(self.data)
        if data.ndim != 3:
            raise ValueError(f"Volume data must be 3D, got shape {data.shape}")
        if min(data.shape) <= 0:
            raise ValueError(f"Volume dimensions must be positive, got {data.shape}")
        voxel_size = tuple(float(v) for v in self.voxel_size)
        if len(voxel_size) != 3 or not all(np.isfinite(v) and v > 0 for v in voxel_size):
            raise ValueError(f"Voxel size must be three positive numbers, got {self.voxel_size}")

        # Private read-only copy; already read-only arrays are shared as views
        if data.flags.writeable:
            data = np.array(data, copy=True)
        else:
            data = data.view()
        data.flags.writeable = False
        object.__setattr__(self, 'data', data)
        object.__setattr__(self, 'voxel_size', voxel_size)

    @classmethod
    def from_buffer(cls, buffer, dims: Sequence[int], voxel_size: Sequence[float] = (1.0, 1.0, 1.0),
                    scale_slope: float = 0.0, scale_intercept: float = 0.0) -> 'Volume':
        """Build a volume from a decoded flat buffer.

        Args:
            buffer: Flat scalar buffer, X fastest, then Y, then Z
            dims: (dimX, dimY, dimZ)
            voxel_size: (dx, dy, dz) in mm
            scale_slope: NIfTI scl_slope; 0 means no scaling
            scale_intercept: NIfTI scl_inter

        Returns:
            Volume: The reshaped (and possibly rescaled) volume
        """
        dim_x, dim_y, dim_z = (int(d) for d in dims)
        flat = np.asarray(buffer).ravel()
        if flat.size != dim_x * dim_y * dim_z:
            raise ValueError(
                f"Buffer of length {flat.size} does not match dims {tuple(dims)}"
            )
        if scale_slope:
            flat = flat.astype(np.float32) * np.float32(scale_slope) + np.float32(scale_intercept)
        return cls(flat.reshape(dim_z, dim_y, dim_x), tuple(voxel_size))

    @property
    def dims(self) -> Tuple[int, int, int]:
        """(dimX, dimY, dimZ)"""
        dim_z, dim_y, dim_x = self.data.shape
        return dim_x, dim_y, dim_z

    @property
    def num_voxels(self) -> int:
        return int(self.data.size)

    @property
    def flat(self) -> np.ndarray:
        return self.data.ravel()

    @property
    def voxel_volume_mm3(self) -> float:
        dx, dy, dz = self.voxel_size
        return dx * dy * dz

    def same_space(self, other: 'Volume') -> bool:
        return self.dims == other.dims


@dataclass(frozen=True)
class LesionRecord:
    """A connected lesion component that survived the size filter"""
    id: int
    x: int
    y: int
    z: int
    volume: int  # voxel count

    @property
    def centroid(self) -> Tuple[int, int, int]:
        return self.x, self.y, self.z


@dataclass
class LabelingResult:
    """Output of connected-component labeling

    Attributes:
        labeled_volume: int32 array with the mask's shape, 0 = background, 1..N = component id
        lesions: Lesion records ordered by volume, largest first
    """
    labeled_volume: np.ndarray
    lesions: List[LesionRecord] = field(default_factory=list)

    @property
    def num_components(self) -> int:
        return int(self.labeled_volume.max()) if self.labeled_volume.size else 0


@dataclass(frozen=True)
class ContrastRange:
    """Display window bounds"""
    min: float
    max: float

    @property
    def width(self) -> float:
        # A zero range would divide by zero when windowing
        return (self.max - self.min) or 1.0

    def as_tuple(self) -> Tuple[float, float]:
        return self.min, self.max


@dataclass
class PreparedModality:
    """A display-ready modality volume with its contrast settings"""
    volume: Volume
    default_window: ContrastRange
    slider_limits: ContrastRange
    normalized: bool = True
