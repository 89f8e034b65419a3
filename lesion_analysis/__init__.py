"""
Lesion analysis core for reviewing white-matter lesions on MRI volumes:
connected-component labeling of lesion masks, intensity normalization and
contrast estimation, and slice rendering with lesion outlines.
"""

from .data_structures import ContrastRange, LabelingResult, LesionRecord, PreparedModality, Volume
from .labeling import find_connected_components
from .normalization import calculate_contrast_percentiles, z_normalize
from .slice_projector import ViewAxis, ViewSpec, render_slice

__version__ = "0.1"
__all__ = [
    'ContrastRange',
    'LabelingResult',
    'LesionRecord',
    'PreparedModality',
    'Volume',
    'find_connected_components',
    'calculate_contrast_percentiles',
    'z_normalize',
    'ViewAxis',
    'ViewSpec',
    'render_slice',
]
