"""
3D connected-component labeling of lesion masks.

Single raster scan with union-find over provisional labels, 26-connectivity,
followed by a resolve pass that writes dense final ids and accumulates
per-component centroids.
"""

import numpy as np
import logging
from typing import List, Optional, Sequence, Tuple
from tqdm import tqdm

from .config import MASK_THRESHOLD, MIN_LESION_VOXELS
from .data_structures import LabelingResult, LesionRecord, Volume

logger = logging.getLogger(__name__)

# The 13 neighbours (dx, dy, dz) that precede a voxel in Z, Y, X scan order
PRECEDING_NEIGHBORS: Tuple[Tuple[int, int, int], ...] = (
    (-1, -1, -1), (0, -1, -1), (1, -1, -1),
    (-1, 0, -1), (0, 0, -1), (1, 0, -1),
    (-1, 1, -1), (0, 1, -1), (1, 1, -1),
    (-1, -1, 0), (0, -1, 0), (1, -1, 0),
    (-1, 0, 0),
)


class UnionFind:
    """Disjoint sets over provisional labels, stored in a pre-sized arena

    The root with the smaller id always wins a union, so a component's root
    is its lowest provisional label.
    """

    def __init__(self, capacity: int):
        """Initialize the arena

        Args:
            capacity: Number of slots; label ids must be < capacity
        """
        self.parent = [0] * capacity

    def make_set(self, label: int) -> None:
        self.parent[label] = label

    def find(self, label: int) -> int:
        parent = self.parent
        while label != parent[label]:
            parent[label] = parent[parent[label]]  # path halving
            label = parent[label]
        return label

    def union(self, a: int, b: int) -> int:
        """Merge the sets of a and b, returning the surviving root"""
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return root_a
        if root_a < root_b:
            self.parent[root_b] = root_a
            return root_a
        self.parent[root_a] = root_b
        return root_b


def _as_array(mask) -> np.ndarray:
    if isinstance(mask, Volume):
        return mask.data
    mask = np.asarray(mask)
    if mask.ndim != 3:
        raise ValueError(f"Lesion mask must be 3D, got shape {mask.shape}")
    return mask


def find_connected_components(mask, min_voxels: int = MIN_LESION_VOXELS,
                              show_progress: bool = False) -> LabelingResult:
    """Label 26-connected foreground components of a lesion mask

    The input is not modified; a new labeled array is returned.

    Args:
        mask: Volume or 3D array (Z, Y, X); foreground is value > 0.5
        min_voxels: Components with this many voxels or fewer are left out
            of the lesion list (they keep their id in the labeled volume)
        show_progress: Show a tqdm bar over Z slices

    Returns:
        LabelingResult: labeled volume (int32, 0 = background, dense ids
        1..N) and lesion records sorted by volume, largest first
    """
    mask_array = _as_array(mask)
    dim_z, dim_y, dim_x = mask_array.shape
    plane = dim_x * dim_y

    # Flat indices of foreground voxels, already in Z, Y, X scan order
    foreground = np.flatnonzero(mask_array.ravel() > MASK_THRESHOLD)
    logger.info(f"Labeling {foreground.size} foreground voxels in a {dim_x}x{dim_y}x{dim_z} mask")

    labels_out = np.zeros(mask_array.size, dtype=np.int32)
    if foreground.size == 0:
        return LabelingResult(labels_out.reshape(mask_array.shape), [])

    # At most one provisional label per foreground voxel, plus the unused 0 slot
    union_find = UnionFind(foreground.size + 1)
    provisional = {}
    next_label = 1

    # Split the foreground by slice so progress can be reported per Z
    slice_starts = np.searchsorted(foreground, np.arange(dim_z + 1) * plane)

    # Pass 1: provisional labels
    for z in tqdm(range(dim_z), desc="Labeling slices", leave=False, disable=not show_progress):
        for idx in foreground[slice_starts[z]:slice_starts[z + 1]].tolist():
            rem = idx - z * plane
            y, x = divmod(rem, dim_x)

            neighbor_labels = []
            for dx, dy, dz in PRECEDING_NEIGHBORS:
                nx, ny, nz = x + dx, y + dy, z + dz
                if 0 <= nx < dim_x and 0 <= ny < dim_y and nz >= 0:
                    label = provisional.get(nx + ny * dim_x + nz * plane)
                    if label is not None:
                        neighbor_labels.append(label)

            if not neighbor_labels:
                provisional[idx] = next_label
                union_find.make_set(next_label)
                next_label += 1
            else:
                min_label = min(neighbor_labels)
                provisional[idx] = min_label
                for label in neighbor_labels:
                    union_find.union(label, min_label)

    # Roots in ascending provisional order get dense ids 1..N
    final_ids = [0] * next_label
    num_components = 0
    for label in range(1, next_label):
        if union_find.parent[label] == label:
            num_components += 1
            final_ids[label] = num_components

    label_map = np.zeros(next_label, dtype=np.int32)
    for label in range(1, next_label):
        label_map[label] = final_ids[union_find.find(label)]
    logger.debug(f"{next_label - 1} provisional labels resolved to {num_components} components")

    # Pass 2: write final ids and accumulate centroids, dense by final id
    provisional_labels = np.fromiter((provisional[idx] for idx in foreground.tolist()),
                                     dtype=np.int64, count=foreground.size)
    final_labels = label_map[provisional_labels]
    labels_out[foreground] = final_labels

    zs, rem = np.divmod(foreground, plane)
    ys, xs = np.divmod(rem, dim_x)
    counts = np.bincount(final_labels, minlength=num_components + 1)
    sum_x = np.bincount(final_labels, weights=xs, minlength=num_components + 1)
    sum_y = np.bincount(final_labels, weights=ys, minlength=num_components + 1)
    sum_z = np.bincount(final_labels, weights=zs, minlength=num_components + 1)

    lesions = []
    for final_id in range(1, num_components + 1):
        count = int(counts[final_id])
        if count <= min_voxels:
            continue
        lesions.append(LesionRecord(
            id=final_id,
            x=_round_half_up(sum_x[final_id] / count),
            y=_round_half_up(sum_y[final_id] / count),
            z=_round_half_up(sum_z[final_id] / count),
            volume=count
        ))

    lesions.sort(key=lambda lesion: lesion.volume, reverse=True)
    logger.info(f"Found {num_components} components, {len(lesions)} larger than {min_voxels} voxels")
    return LabelingResult(labels_out.reshape(mask_array.shape), lesions)


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def total_lesion_volume_ml(lesions: Sequence[LesionRecord], voxel_size: Sequence[float]) -> float:
    """Total physical volume of the lesions in millilitres"""
    dx, dy, dz = voxel_size
    return sum(lesion.volume * dx * dy * dz for lesion in lesions) / 1000.0


def initial_cursor(lesions: Sequence[LesionRecord], dims: Sequence[int]) -> Tuple[int, int, int]:
    """Starting voxel for review: the largest lesion, else the volume centre"""
    if lesions:
        return lesions[0].centroid
    dim_x, dim_y, dim_z = dims
    return dim_x // 2, dim_y // 2, dim_z // 2


def lesion_at(labeled_volume: np.ndarray, lesions: List[LesionRecord],
              x: int, y: int, z: int) -> Optional[LesionRecord]:
    """Lesion record whose id is stored at voxel (x, y, z), if any"""
    label = int(labeled_volume[z, y, x])
    if label == 0:
        return None
    for lesion in lesions:
        if lesion.id == label:
            return lesion
    return None
