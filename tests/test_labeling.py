import numpy as np
import pytest
from scipy import ndimage

from lesion_analysis.data_structures import Volume
from lesion_analysis.labeling import (
    UnionFind,
    find_connected_components,
    initial_cursor,
    lesion_at,
    total_lesion_volume_ml,
)


def make_mask(dims=(12, 12, 12)):
    """Empty mask indexed [z, y, x] for dims (x, y, z)"""
    dim_x, dim_y, dim_z = dims
    return np.zeros((dim_z, dim_y, dim_x), dtype=np.uint8)


def test_union_find_smaller_root_wins():
    uf = UnionFind(6)
    for label in range(1, 6):
        uf.make_set(label)
    assert uf.union(4, 2) == 2
    assert uf.union(5, 4) == 2
    assert uf.union(3, 1) == 1
    assert uf.union(2, 3) == 1
    assert {uf.find(label) for label in range(1, 6)} == {1}


def test_empty_mask():
    result = find_connected_components(make_mask())
    assert result.lesions == []
    assert not result.labeled_volume.any()
    assert result.labeled_volume.dtype == np.int32


def test_separated_clusters_get_different_ids():
    mask = make_mask()
    mask[1:4, 1:4, 1:4] = 1
    mask[5:8, 5:8, 5:8] = 1  # one background voxel between the corners
    result = find_connected_components(mask)

    assert len(result.lesions) == 2
    assert result.labeled_volume[2, 2, 2] != result.labeled_volume[6, 6, 6]


def test_corner_link_joins_clusters():
    mask = make_mask()
    mask[1:4, 1:4, 1:4] = 1
    mask[4:7, 4:7, 4:7] = 1  # touches only at the (3,3,3)-(4,4,4) corner
    result = find_connected_components(mask)

    assert len(result.lesions) == 1
    assert result.lesions[0].volume == 54
    assert result.labeled_volume[2, 2, 2] == result.labeled_volume[5, 5, 5]


def test_late_merge_resolves_to_one_component():
    # A U shape: both arms get separate provisional labels before the base joins them
    mask = make_mask((8, 8, 3))
    mask[1, 0:6, 1] = 1
    mask[1, 0:6, 5] = 1
    mask[1, 5, 1:6] = 1
    result = find_connected_components(mask)

    assert len(result.lesions) == 1
    assert result.num_components == 1
    assert result.lesions[0].volume == 15


def test_size_filter_threshold():
    mask = make_mask((20, 10, 10))
    mask[2, 2, 0:10] = 1   # 10 voxels
    mask[6, 6, 0:11] = 1   # 11 voxels
    result = find_connected_components(mask)

    assert [lesion.volume for lesion in result.lesions] == [11]
    # The dropped component still has a label in the labeled volume
    assert result.num_components == 2
    assert result.labeled_volume[2, 2, 0] > 0


def test_small_components_are_all_dropped():
    mask = make_mask((4, 4, 4))
    mask[0, 0, 0] = mask[0, 0, 1] = mask[0, 1, 0] = mask[0, 1, 1] = 1
    mask[3, 3, 3] = 1
    result = find_connected_components(mask)

    assert result.lesions == []
    assert result.num_components == 2
    assert set(np.unique(result.labeled_volume)) == {0, 1, 2}


def test_cuboid_centroid():
    mask = make_mask((20, 20, 20))
    mask[5:10, 3:6, 2:5] = 1  # z 5..9, y 3..5, x 2..4
    result = find_connected_components(mask)

    lesion = result.lesions[0]
    assert (lesion.x, lesion.y, lesion.z) == (3, 4, 7)
    assert lesion.volume == 45


def test_centroid_rounds_half_up():
    mask = make_mask((20, 20, 20))
    mask[0:4, 0:4, 0:4] = 1  # mean 1.5 on every axis
    lesion = find_connected_components(mask).lesions[0]
    assert lesion.centroid == (2, 2, 2)


def test_ids_are_dense_and_sorted_by_volume():
    mask = make_mask((30, 30, 30))
    mask[1:3, 1:3, 1:4] = 1       # 12
    mask[10:14, 10:14, 10:14] = 1  # 64
    mask[20:23, 20:23, 20:23] = 1  # 27
    mask[1, 25, 25] = 1           # 1, filtered
    result = find_connected_components(mask)

    ids = sorted(np.unique(result.labeled_volume[result.labeled_volume > 0]).tolist())
    assert ids == [1, 2, 3, 4]
    assert [lesion.volume for lesion in result.lesions] == [64, 27, 12]
    for lesion in result.lesions:
        assert result.labeled_volume[lesion.z, lesion.y, lesion.x] == lesion.id


def test_input_mask_is_not_modified():
    mask = make_mask()
    mask[1:4, 1:4, 1:4] = 1
    original = mask.copy()
    find_connected_components(Volume(mask))
    np.testing.assert_array_equal(mask, original)


def test_threshold_applies_to_probabilities():
    mask = np.zeros((5, 5, 5), dtype=np.float32)
    mask[1:4, 1:4, 1:4] = 0.6
    mask[2, 2, 2] = 0.5  # not foreground
    result = find_connected_components(mask, min_voxels=0)
    assert result.lesions[0].volume == 26
    assert result.labeled_volume[2, 2, 2] == 0


def test_matches_scipy_26_connectivity():
    rng = np.random.default_rng(7)
    mask = (rng.random((14, 16, 18)) > 0.8).astype(np.uint8)
    result = find_connected_components(mask, min_voxels=0)

    expected, num = ndimage.label(mask, structure=np.ones((3, 3, 3)))
    assert result.num_components == num
    # Same partition: each reference component maps to exactly one label and back
    pairs = set(zip(expected[mask > 0].tolist(), result.labeled_volume[mask > 0].tolist()))
    assert len(pairs) == num
    assert sum(lesion.volume for lesion in result.lesions) == int(mask.sum())


def test_rejects_non_3d_mask():
    with pytest.raises(ValueError):
        find_connected_components(np.zeros((4, 4)))


def test_total_lesion_volume_ml():
    mask = make_mask((20, 20, 20))
    mask[0:2, 0:5, 0:5] = 1  # 50 voxels
    lesions = find_connected_components(mask).lesions
    assert total_lesion_volume_ml(lesions, (1.0, 2.0, 0.5)) == pytest.approx(0.05)


def test_initial_cursor_and_lesion_lookup():
    mask = make_mask((20, 20, 20))
    mask[10:13, 10:13, 10:13] = 1
    result = find_connected_components(mask)

    assert initial_cursor(result.lesions, (20, 20, 20)) == (11, 11, 11)
    assert initial_cursor([], (20, 21, 9)) == (10, 10, 4)
    assert lesion_at(result.labeled_volume, result.lesions, 11, 11, 11) is result.lesions[0]
    assert lesion_at(result.labeled_volume, result.lesions, 0, 0, 0) is None
