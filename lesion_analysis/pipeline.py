import os
import logging
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
from tqdm import tqdm

from .config import (
    ContrastParameters,
    DETAIL_ZOOM_MULTIPLIER,
    EXPORT_TARGET_SIZE,
    LESION_MODALITY,
    MIN_LESION_VOXELS,
    NORMALIZED_MODALITIES,
    RAW_MODALITIES,
)
from .data_structures import ContrastRange, LesionRecord, PreparedModality, Volume
from .export import export_slice
from .labeling import find_connected_components, initial_cursor, lesion_at, total_lesion_volume_ml
from .loading import load_volume
from .normalization import fallback_contrast, prepare_modality
from .slice_projector import SliceRender, ViewAxis, ViewSpec, render_slice

logger = logging.getLogger(__name__)


class LesionReviewSession:
    """
    Prepared state for reviewing the lesions of one subject: normalized
    modalities with their contrast settings, the labeled lesion mask and the
    lesion list.
    """

    def __init__(self,
                 volumes: Dict[str, Volume],
                 lesion_mask: Volume,
                 parameters: Optional[ContrastParameters] = None,
                 min_lesion_voxels: int = MIN_LESION_VOXELS,
                 show_progress: bool = False):
        """
        Initialize the session

        Args:
            volumes: Modality name -> intensity volume (e.g. 'flair_star', 'swi', 'flair', 'phase')
            lesion_mask: Binary lesion mask in the same voxel space
            parameters: Contrast parameters for default windows and slider limits
            min_lesion_voxels: Components of this size or smaller are not listed as lesions
            show_progress: Show progress bars while labeling
        """
        if not volumes:
            raise ValueError("At least one intensity volume is required")
        for name, volume in volumes.items():
            if volume is not None and not volume.same_space(lesion_mask):
                raise ValueError(
                    f"Volume '{name}' has dims {volume.dims}, lesion mask has {lesion_mask.dims}"
                )

        self.parameters = parameters or ContrastParameters()
        self.lesion_mask = lesion_mask

        # Step 1: normalize modalities and estimate their contrast
        logger.info("Step 1: Preparing modalities...")
        self.modalities: Dict[str, PreparedModality] = {}
        for name, volume in volumes.items():
            prepared = prepare_modality(volume, name, self.parameters)
            if prepared is not None:
                self.modalities[name] = prepared
                logger.info(f"  {name}: window {prepared.default_window.as_tuple()}, "
                            f"limits {prepared.slider_limits.as_tuple()}")

        # Step 2: label lesions
        logger.info("Step 2: Labeling lesion mask...")
        labeling = find_connected_components(lesion_mask, min_lesion_voxels, show_progress=show_progress)
        self.labeled_mask = Volume(labeling.labeled_volume, lesion_mask.voxel_size)
        self.lesions: List[LesionRecord] = labeling.lesions
        self.cursor = initial_cursor(self.lesions, self.dims)

    @property
    def dims(self) -> Tuple[int, int, int]:
        return self.lesion_mask.dims

    @property
    def voxel_size(self) -> Tuple[float, float, float]:
        return self.lesion_mask.voxel_size

    @property
    def total_lesion_volume_ml(self) -> float:
        return total_lesion_volume_ml(self.lesions, self.voxel_size)

    def contrast(self, modality: str) -> Tuple[ContrastRange, ContrastRange]:
        """(default window, slider limits) for a modality, loaded or not"""
        prepared = self.modalities.get(modality)
        if prepared is not None:
            return prepared.default_window, prepared.slider_limits
        if modality in NORMALIZED_MODALITIES or modality in RAW_MODALITIES:
            return fallback_contrast(modality, self.parameters)
        raise KeyError(f"Unknown modality: {modality}")

    def lesion_at(self, x: int, y: int, z: int) -> Optional[LesionRecord]:
        return lesion_at(self.labeled_mask.data, self.lesions, x, y, z)

    def view_spec(self, axis, modality: str,
                  voxel_coord: Optional[Sequence[int]] = None,
                  fov_zoom: Optional[float] = None,
                  box_zoom: Optional[float] = None,
                  window: Optional[ContrastRange] = None,
                  current_lesion_label: Optional[int] = None,
                  show_mask: bool = True,
                  ignore_aspect_ratio: bool = False,
                  cursor: Optional[str] = None) -> ViewSpec:
        """Build a view specification for one of the session's modalities"""
        if modality == LESION_MODALITY:
            intensity = self.labeled_mask
            window = window or ContrastRange(0.0, 1.0)
        else:
            prepared = self.modalities.get(modality)
            if prepared is None:
                raise ValueError(f"Modality '{modality}' is not loaded")
            intensity = prepared.volume
            window = window or prepared.default_window

        return ViewSpec(
            intensity=intensity,
            axis=axis,
            voxel_coord=tuple(voxel_coord) if voxel_coord is not None else self.cursor,
            mask=self.labeled_mask,
            voxel_size=self.voxel_size,
            window_min=window.min,
            window_max=window.max,
            fov_zoom=fov_zoom,
            box_zoom=box_zoom,
            ignore_aspect_ratio=ignore_aspect_ratio,
            current_lesion_label=current_lesion_label,
            show_mask=show_mask,
            cursor=cursor
        )

    def render(self, axis, modality: str, **kwargs) -> SliceRender:
        return render_slice(self.view_spec(axis, modality, **kwargs))

    def lesion_views(self, lesion: LesionRecord, modality: str,
                     zoom: float = 1.0) -> Iterator[Tuple[str, ViewSpec]]:
        """Zoomed and full views of the three axes centred on a lesion

        The full views carry an ROI box showing the zoomed field of view.
        """
        detail_zoom = zoom * DETAIL_ZOOM_MULTIPLIER
        for axis in ViewAxis:
            name = axis.name.lower()
            yield f"{name}_zoom", self.view_spec(axis, modality, lesion.centroid,
                                                 fov_zoom=detail_zoom,
                                                 current_lesion_label=lesion.id)
            yield name, self.view_spec(axis, modality, lesion.centroid,
                                       box_zoom=detail_zoom,
                                       current_lesion_label=lesion.id)


def run_lesion_analysis(input_files: Dict[str, str], output_dir: str,
                        zoom: float = 1.0,
                        modality: str = 'flair_star',
                        min_lesion_voxels: int = MIN_LESION_VOXELS,
                        max_lesions: Optional[int] = None,
                        parameter_set: str = 'default',
                        target_size: int = EXPORT_TARGET_SIZE) -> LesionReviewSession:
    """Label a lesion mask and export snapshots of every lesion

    Args:
        input_files: Modality name -> image path; must contain 'lesion'
        output_dir: Directory for snapshots and the log file
        zoom: User zoom; detail views use zoom * 2
        modality: Modality shown in the snapshots
        min_lesion_voxels: Lesion size filter in voxels
        max_lesions: Only export the largest N lesions
        parameter_set: Name of a ContrastParameters set
        target_size: Snapshot width in pixels

    Returns:
        The review session
    """
    logger.info("Starting lesion analysis...")
    os.makedirs(output_dir, exist_ok=True)

    # Set up logging to file
    log_file = os.path.join(output_dir, "lesion_analysis.log")
    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    logging.getLogger().addHandler(file_handler)

    try:
        parameter_sets = ContrastParameters.get_parameter_sets()
        if parameter_set not in parameter_sets:
            raise ValueError(f"Unknown parameter set '{parameter_set}', choose from {sorted(parameter_sets)}")

        if LESION_MODALITY not in input_files:
            raise ValueError("A lesion mask is required")
        if modality not in input_files:
            raise ValueError(f"Modality '{modality}' was selected but no file was given for it")

        logger.info("Loading volumes...")
        lesion_mask = load_volume(input_files[LESION_MODALITY])
        volumes = {
            name: load_volume(path)
            for name, path in input_files.items()
            if name != LESION_MODALITY and path
        }

        session = LesionReviewSession(
            volumes,
            lesion_mask,
            parameters=parameter_sets[parameter_set],
            min_lesion_voxels=min_lesion_voxels,
            show_progress=True
        )

        logger.info(f"Found {len(session.lesions)} lesions, "
                    f"total volume {session.total_lesion_volume_ml:.2f} ml")
        for lesion in session.lesions:
            logger.info(f"  Lesion {lesion.id}: centroid ({lesion.x}, {lesion.y}, {lesion.z}), "
                        f"{lesion.volume} voxels")

        # Step 3: snapshots
        logger.info("Step 3: Exporting lesion snapshots...")
        lesions = session.lesions if max_lesions is None else session.lesions[:max_lesions]
        for rank, lesion in enumerate(tqdm(lesions, desc="Exporting lesions", leave=False), start=1):
            lesion_dir = os.path.join(output_dir, f"lesion_{rank:03d}_id{lesion.id}")
            for view_name, spec in session.lesion_views(lesion, modality, zoom):
                export_slice(spec, os.path.join(lesion_dir, f"{modality}_{view_name}.png"), target_size)

        logger.info("Lesion analysis completed successfully.")
        return session

    except Exception as e:
        logger.error(f"Error during lesion analysis: {str(e)}")
        raise
    finally:
        logging.getLogger().removeHandler(file_handler)
        file_handler.close()
