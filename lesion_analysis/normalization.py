import numpy as np
import logging
from typing import Optional

from .config import ContrastParameters, NORMALIZED_MODALITIES
from .data_structures import ContrastRange, PreparedModality, Volume

logger = logging.getLogger(__name__)


def z_normalize(data) -> np.ndarray:
    """Z-score normalize a scalar array using population statistics

    Args:
        data: Array of any shape

    Returns:
        float32 array of the same shape with (value - mean) / std
    """
    values = np.asarray(data, dtype=np.float64)
    if values.size == 0:
        return np.zeros(values.shape, dtype=np.float32)

    # Two passes: mean first, then the population variance around it
    mean = values.mean()
    std = np.sqrt(np.mean((values - mean) ** 2))
    if not std:
        std = 1.0  # constant volume

    logger.debug(f"z-normalization: mean={mean:.4f}, std={std:.4f}")
    return ((values - mean) / std).astype(np.float32)


def normalize_volume(volume: Volume) -> Volume:
    """Return a z-normalized copy of a volume"""
    return Volume(z_normalize(volume.data), volume.voxel_size)


def calculate_percentile(sorted_data, percentile: float) -> float:
    """Look up a percentile in an ascending array

    Index is floor(p/100 * n), clamped to the last element.
    """
    sorted_data = np.asarray(sorted_data)
    if sorted_data.size == 0:
        raise ValueError("Cannot take a percentile of an empty array")
    index = int(np.floor((percentile / 100.0) * sorted_data.size))
    index = min(max(index, 0), sorted_data.size - 1)
    return float(sorted_data[index])


def calculate_contrast_percentiles(data, low: float = 1.0, high: float = 99.99,
                                   stride: int = 100) -> ContrastRange:
    """Estimate a display window from a strided sample of the data

    Every `stride`-th voxel of the flat buffer is sampled, so this is an
    approximation of the true percentiles, but it is deterministic for the
    same input.

    Args:
        data: Volume, or array of any shape
        low: Lower percentile in [0, 100]
        high: Upper percentile in [0, 100]
        stride: Sampling stride over the flat buffer

    Returns:
        ContrastRange: (p_low, p_high)
    """
    if isinstance(data, Volume):
        data = data.data
    sampled = np.sort(np.asarray(data).ravel()[::max(int(stride), 1)])
    contrast = ContrastRange(
        calculate_percentile(sampled, low),
        calculate_percentile(sampled, high)
    )
    logger.debug(f"Percentiles {low}/{high} over {sampled.size} samples: {contrast}")
    return contrast


def prepare_modality(volume: Optional[Volume], modality: str,
                     parameters: Optional[ContrastParameters] = None) -> Optional[PreparedModality]:
    """Normalize a modality and derive its default window and slider limits

    Args:
        volume: Loaded volume, or None if the modality is missing
        modality: Modality key ('flair_star', 'swi', 'flair', 'phase', ...)
        parameters: Contrast parameters (default: ContrastParameters())

    Returns:
        PreparedModality, or None when the volume is missing
    """
    if volume is None:
        return None
    if parameters is None:
        parameters = ContrastParameters()

    stride = parameters.sample_stride
    if modality in NORMALIZED_MODALITIES:
        normalized = normalize_volume(volume)
        return PreparedModality(
            volume=normalized,
            default_window=calculate_contrast_percentiles(normalized, *parameters.default_percentiles, stride=stride),
            slider_limits=calculate_contrast_percentiles(normalized, *parameters.limit_percentiles, stride=stride),
            normalized=True
        )

    # Raw modalities (phase) keep their values and a fixed default window
    return PreparedModality(
        volume=volume,
        default_window=ContrastRange(*parameters.phase_window),
        slider_limits=calculate_contrast_percentiles(volume, *parameters.limit_percentiles, stride=stride),
        normalized=False
    )


def fallback_contrast(modality: str, parameters: Optional[ContrastParameters] = None):
    """Default (window, limits) for a modality that was not loaded"""
    if parameters is None:
        parameters = ContrastParameters()
    if modality in NORMALIZED_MODALITIES:
        return ContrastRange(*parameters.fallback_window), ContrastRange(*parameters.fallback_limits)
    return ContrastRange(*parameters.phase_window), ContrastRange(*parameters.phase_fallback_limits)
