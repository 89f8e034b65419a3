import os
import logging
import numpy as np
import SimpleITK as sitk

from .data_structures import Volume

logger = logging.getLogger(__name__)


def load_volume(file_path: str) -> Volume:
    """Load a NIfTI (or any SimpleITK-readable) 3D image as a Volume

    SimpleITK applies the NIfTI scl_slope/scl_inter rescaling on read
    (a slope of 0 means no scaling).

    Args:
        file_path: Path to the image file

    Returns:
        Volume with data as (Z, Y, X) and voxel size from the header spacing
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Required input file not found: {file_path}")

    try:
        image = sitk.ReadImage(file_path)
    except RuntimeError as e:
        logger.error(f"Failed to read {file_path}: {str(e)}")
        raise

    if image.GetDimension() != 3:
        raise ValueError(f"Expected a 3D image, {file_path} has {image.GetDimension()} dimensions")
    if image.GetNumberOfComponentsPerPixel() != 1:
        raise ValueError(f"Expected a scalar image, {file_path} has vector pixels")

    data = sitk.GetArrayFromImage(image)
    # Integer images that were rescaled come back as float already
    if data.dtype == np.float64:
        data = data.astype(np.float32)
    volume = Volume(data, image.GetSpacing())
    logger.info(f"Loaded {os.path.basename(file_path)}: dims {volume.dims} ({volume.num_voxels} voxels), voxel size {volume.voxel_size}")
    return volume
