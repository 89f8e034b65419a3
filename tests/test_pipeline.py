import os
import numpy as np
import pytest
import SimpleITK as sitk

from lesion_analysis.data_structures import ContrastRange, Volume
from lesion_analysis.pipeline import LesionReviewSession, run_lesion_analysis
from lesion_analysis.slice_projector import ViewAxis

import run_lesion_analysis as cli


def make_subject(shape=(24, 32, 32), voxel_size=(1.0, 1.0, 2.0)):
    rng = np.random.default_rng(11)
    flair_star = rng.normal(300.0, 40.0, size=shape).astype(np.float32)
    phase = rng.uniform(-2000.0, 2000.0, size=shape).astype(np.float32)
    mask = np.zeros(shape, dtype=np.uint8)
    mask[4:8, 5:10, 5:10] = 1        # 100 voxels
    mask[15:18, 20:23, 20:23] = 1    # 27 voxels
    mask[20, 2, 2] = 1               # noise
    volumes = {
        'flair_star': Volume(flair_star, voxel_size),
        'phase': Volume(phase, voxel_size),
    }
    return volumes, Volume(mask, voxel_size)


def test_session_labels_and_prepares():
    volumes, mask = make_subject()
    session = LesionReviewSession(volumes, mask)

    assert [lesion.volume for lesion in session.lesions] == [100, 27]
    assert session.cursor == session.lesions[0].centroid
    assert session.total_lesion_volume_ml == pytest.approx(127 * 2.0 / 1000.0)
    assert session.modalities['flair_star'].normalized
    assert not session.modalities['phase'].normalized
    assert session.contrast('phase')[0] == ContrastRange(-500.0, 500.0)
    # Unloaded modality falls back to defaults
    assert session.contrast('swi')[0] == ContrastRange(-1.5, 1.96)
    with pytest.raises(KeyError):
        session.contrast('t2')

    lesion = session.lesions[0]
    assert session.lesion_at(lesion.x, lesion.y, lesion.z) == lesion


def test_session_rejects_mismatched_dims():
    volumes, mask = make_subject()
    volumes['swi'] = Volume(np.zeros((24, 32, 31), dtype=np.float32))
    with pytest.raises(ValueError):
        LesionReviewSession(volumes, mask)


def test_session_render_views():
    volumes, mask = make_subject()
    session = LesionReviewSession(volumes, mask)
    lesion = session.lesions[0]

    views = dict(session.lesion_views(lesion, 'flair_star', zoom=1.0))
    assert set(views) == {
        'sagittal_zoom', 'sagittal', 'coronal_zoom', 'coronal', 'axial_zoom', 'axial'
    }
    assert views['axial_zoom'].fov_zoom == 2
    assert views['axial'].box_zoom == 2
    assert views['axial'].current_lesion_label == lesion.id

    render = session.render(ViewAxis.AXIAL, 'flair_star', fov_zoom=2)
    # min dim 24 / 2 = 12, axial aspect 1
    assert render.rgba.shape == (12, 12, 4)

    with pytest.raises(ValueError):
        session.render('z', 'swi')


def write_nifti(path, volume):
    image = sitk.GetImageFromArray(np.asarray(volume.data))
    image.SetSpacing(volume.voxel_size)
    sitk.WriteImage(image, str(path))


def test_run_lesion_analysis_exports_snapshots(tmp_path):
    volumes, mask = make_subject()
    write_nifti(tmp_path / "flair_star.nii.gz", volumes['flair_star'])
    write_nifti(tmp_path / "lesion.nii.gz", mask)
    output_dir = tmp_path / "out"

    session = run_lesion_analysis(
        {'flair_star': str(tmp_path / "flair_star.nii.gz"), 'lesion': str(tmp_path / "lesion.nii.gz")},
        str(output_dir),
        max_lesions=1,
        target_size=64
    )

    assert len(session.lesions) == 2
    lesion = session.lesions[0]
    lesion_dir = output_dir / f"lesion_001_id{lesion.id}"
    pngs = sorted(os.listdir(lesion_dir))
    assert len(pngs) == 6
    assert "flair_star_axial_zoom.png" in pngs
    assert not (output_dir / f"lesion_002_id{session.lesions[1].id}").exists()
    assert (output_dir / "lesion_analysis.log").exists()


def test_run_lesion_analysis_requires_mask(tmp_path):
    with pytest.raises(ValueError):
        run_lesion_analysis({'flair_star': 'unused.nii.gz'}, str(tmp_path))


def test_cli(tmp_path):
    volumes, mask = make_subject()
    write_nifti(tmp_path / "flair_star.nii.gz", volumes['flair_star'])
    write_nifti(tmp_path / "lesion.nii.gz", mask)

    result = cli.main([
        '--lesion-mask', str(tmp_path / "lesion.nii.gz"),
        '--flair-star', str(tmp_path / "flair_star.nii.gz"),
        '--output-folder', str(tmp_path / "cli_out"),
        '--min-lesion-voxels', '50',
    ])
    # Console scripts pass the return value to sys.exit
    assert result is None
    lesion_dirs = sorted(p.name for p in (tmp_path / "cli_out").iterdir() if p.is_dir())
    # Only the 100-voxel lesion survives the 50 voxel filter
    assert len(lesion_dirs) == 1
    assert lesion_dirs[0].startswith("lesion_001_id")
    assert len(list((tmp_path / "cli_out" / lesion_dirs[0]).glob("*.png"))) == 6
