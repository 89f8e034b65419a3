import numpy as np
import pytest
import SimpleITK as sitk

from lesion_analysis.data_structures import Volume
from lesion_analysis.loading import load_volume


def write_nifti(path, array, spacing=(1.0, 1.0, 1.0)):
    image = sitk.GetImageFromArray(array)
    image.SetSpacing(spacing)
    sitk.WriteImage(image, str(path))


def test_load_volume_round_trip(tmp_path):
    array = np.arange(3 * 4 * 5, dtype=np.int16).reshape(3, 4, 5)  # (z, y, x)
    path = tmp_path / "t1.nii.gz"
    write_nifti(path, array, spacing=(0.5, 0.75, 2.0))

    volume = load_volume(str(path))
    assert volume.dims == (5, 4, 3)
    assert volume.num_voxels == 60
    assert volume.voxel_size == pytest.approx((0.5, 0.75, 2.0))
    np.testing.assert_array_equal(volume.data, array)
    # Flat layout is x + y*dimX + z*dimX*dimY
    assert volume.flat[1 + 2 * 5 + 1 * 20] == array[1, 2, 1]


def test_load_volume_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_volume(str(tmp_path / "missing.nii.gz"))


def test_load_volume_rejects_2d(tmp_path):
    path = tmp_path / "flat.nii.gz"
    sitk.WriteImage(sitk.GetImageFromArray(np.zeros((4, 5), dtype=np.uint8)), str(path))
    with pytest.raises(ValueError):
        load_volume(str(path))


def test_volume_from_buffer_layout():
    buffer = np.arange(24)
    volume = Volume.from_buffer(buffer, dims=(4, 3, 2), voxel_size=(1, 1, 2))
    assert volume.dims == (4, 3, 2)
    x, y, z = 3, 1, 1
    assert volume.data[z, y, x] == x + y * 4 + z * 12
    assert volume.voxel_volume_mm3 == 2.0


def test_volume_from_buffer_scaling():
    buffer = np.array([0, 1, 2, 3, 4, 5, 6, 7], dtype=np.int16)
    scaled = Volume.from_buffer(buffer, (2, 2, 2), scale_slope=2.0, scale_intercept=-1.0)
    assert scaled.data.dtype == np.float32
    np.testing.assert_array_equal(scaled.flat, buffer * 2.0 - 1.0)

    unscaled = Volume.from_buffer(buffer, (2, 2, 2), scale_slope=0.0, scale_intercept=5.0)
    assert unscaled.data.dtype == np.int16
    np.testing.assert_array_equal(unscaled.flat, buffer)


def test_volume_is_immutable():
    volume = Volume(np.zeros((2, 2, 2)))
    with pytest.raises(ValueError):
        volume.data[0, 0, 0] = 1


@pytest.mark.parametrize("data, voxel_size", [
    (np.zeros((2, 2)), (1, 1, 1)),
    (np.zeros((0, 2, 2)), (1, 1, 1)),
    (np.zeros((2, 2, 2)), (1, 0, 1)),
])
def test_volume_validation(data, voxel_size):
    with pytest.raises(ValueError):
        Volume(data, voxel_size)


def test_volume_from_buffer_length_mismatch():
    with pytest.raises(ValueError):
        Volume.from_buffer(np.zeros(7), (2, 2, 2))


def test_volume_does_not_track_source_array():
    source = np.zeros((2, 2, 2))
    volume = Volume(source)
    source[0, 0, 0] = 5
    assert volume.data[0, 0, 0] == 0
    assert source.flags.writeable


def test_volume_shares_read_only_source():
    source = np.arange(8.0).reshape(2, 2, 2)
    source.flags.writeable = False
    volume = Volume(source)
    np.testing.assert_array_equal(volume.data, source)
    assert np.shares_memory(volume.data, source)
    assert volume.num_voxels == 8
