# Lesion analysis parameters
# Constants used by the labeler, the normalization engine and the slice
# projector, with notes on how they affect the results.

from dataclasses import dataclass
from typing import Dict, Tuple

#------------------------------------------------------------------------------
# Connected-component labeling
#------------------------------------------------------------------------------

# Foreground threshold applied to the lesion mask
MASK_THRESHOLD = 0.5
# Effect: Binary masks stored as 0/1 or as probabilities both work
# Label volumes (0..N) are treated as foreground wherever the label is >= 1

# Minimum lesion size (in voxels); components of this size or smaller are dropped
MIN_LESION_VOXELS = 10
# Effect: Raw voxel count, NOT scaled by voxel volume, so the physical cutoff
# varies with acquisition resolution (10 voxels at 1mm iso is 0.01ml)

#------------------------------------------------------------------------------
# Display
#------------------------------------------------------------------------------

# Default window when a caller gives none
DEFAULT_WINDOW_MIN = 0.0
DEFAULT_WINDOW_MAX = 1000.0

# Side length of exported snapshots (pixels)
EXPORT_TARGET_SIZE = 512

# Zoom applied to the detail row relative to the user zoom
DETAIL_ZOOM_MULTIPLIER = 2

# RGB colours
OUTLINE_COLOR: Tuple[int, int, int] = (0, 255, 0)
CURRENT_LESION_COLOR: Tuple[int, int, int] = (0, 255, 0)
OTHER_LESION_COLOR: Tuple[int, int, int] = (96, 165, 250)  # #60a5fa
CROSSHAIR_COLOR: Tuple[int, int, int] = (0, 255, 0)
ROI_BOX_COLOR: Tuple[int, int, int] = (255, 255, 255)

#------------------------------------------------------------------------------
# Modalities
#------------------------------------------------------------------------------

# Modalities shown z-normalized; everything else is shown raw
NORMALIZED_MODALITIES = ('flair_star', 'swi', 'flair')
RAW_MODALITIES = ('phase',)
LESION_MODALITY = 'lesion'


@dataclass
class ContrastParameters:
    """Percentile pairs and fallback windows for contrast estimation

    Parameters:
        default_percentiles: (low, high) = (1.0, 99.9)
            Percentiles used for the initial display window.
            - Narrower pair: more contrast, more clipping
            - Wider pair: less clipping but flatter images

        limit_percentiles: (low, high) = (0.01, 99.99)
            Percentiles bounding the window sliders.

        sample_stride: int = 100
            Every Nth voxel is sampled for percentile estimation.
            - Smaller values: closer to the exact percentile, slower
            - Larger values: faster on big volumes, coarser estimate

        fallback_window / fallback_limits:
            Used for a normalized modality that was not loaded.

        phase_window / phase_fallback_limits:
            Fixed window for raw phase images, and slider bounds when no
            phase image was loaded.
    """
    default_percentiles: Tuple[float, float] = (1.0, 99.9)
    limit_percentiles: Tuple[float, float] = (0.01, 99.99)
    sample_stride: int = 100
    fallback_window: Tuple[float, float] = (-1.5, 1.96)
    fallback_limits: Tuple[float, float] = (-5.0, 10.0)
    phase_window: Tuple[float, float] = (-500.0, 500.0)
    phase_fallback_limits: Tuple[float, float] = (-1000.0, 1000.0)

    @classmethod
    def get_parameter_sets(cls) -> Dict[str, 'ContrastParameters']:
        """Get predefined parameter sets"""
        return {
            'default': cls(),
            'high_contrast': cls(
                default_percentiles=(5.0, 99.5),  # Clip more of both tails
            ),
            'full_range': cls(
                default_percentiles=(0.01, 99.99),  # Show everything the sliders allow
            ),
            'exact': cls(
                sample_stride=1,  # Use every voxel (slow on large volumes)
            ),
        }

    @classmethod
    def from_dict(cls, params_dict):
        """Create parameters from dictionary of overrides"""
        base_params = cls()
        for key, value in params_dict.items():
            if hasattr(base_params, key):
                setattr(base_params, key, value)
        return base_params
