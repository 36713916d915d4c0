from __future__ import annotations

import warnings

import numpy as np
import pytest

from viewlink import geometry
from viewlink.geometry import (
    MASK_VERTS,
    CameraIntrinsics,
    DisplayInfo,
    Viewport,
    ar_projection,
    center_eye_matrices,
    compute_ar_geometry,
    look_at,
    mask_vertices,
    viewport_placement,
)

DISPLAY = DisplayInfo(position=(0, 0), native_resolution=(1920, 1080), size_m=(0.52, 0.29))
INTR = CameraIntrinsics(focal_length=600.0, principal_point_x=320.0, principal_point_y=240.0)


def _ndc(matrix, point):
    v = matrix @ np.append(np.asarray(point, dtype=np.float64), 1.0)
    return v[:3] / v[3]


def test_ar_projection_centres_principal_point():
    proj = ar_projection(INTR, 640, 480, 0.1, 100.0)
    assert _ndc(proj, (0.0, 0.0, -1.0))[:2] == pytest.approx([0.0, 0.0])


def test_ar_projection_axes():
    proj = ar_projection(INTR, 640, 480, 0.1, 100.0)
    right = _ndc(proj, (0.1, 0.0, -1.0))
    up = _ndc(proj, (0.0, 0.1, -1.0))
    assert right[0] > 0
    assert up[1] > 0
    # 600 px focal length: 0.1 m at 1 m lands 60 px off centre
    assert right[0] == pytest.approx(60.0 / 320.0)


def test_ar_projection_depth_range():
    proj = ar_projection(INTR, 640, 480, 0.1, 100.0)
    assert _ndc(proj, (0.0, 0.0, -0.1))[2] == pytest.approx(-1.0)
    assert _ndc(proj, (0.0, 0.0, -100.0))[2] == pytest.approx(1.0)


@pytest.mark.parametrize("w, h, near, far", [
    (0, 480, 0.1, 100.0),
    (640, -1, 0.1, 100.0),
    (640, 480, 0.0, 100.0),
    (640, 480, 10.0, 1.0),
])
def test_ar_projection_rejects_bad_input(w, h, near, far):
    with pytest.raises(ValueError):
        ar_projection(INTR, w, h, near, far)


def test_viewport_placement_full_display():
    centre, size = viewport_placement(Viewport(0, 0, 1920, 1080), DISPLAY)
    assert centre == pytest.approx([0.0, 0.0, 0.0])
    assert size == pytest.approx([0.52, 0.29])


def test_viewport_placement_top_left_quadrant():
    centre, size = viewport_placement(Viewport(0, 0, 960, 540), DISPLAY)
    assert centre == pytest.approx([-0.13, 0.0725, 0.0])
    assert size == pytest.approx([0.26, 0.145])


def test_center_eye_symmetric_when_eye_centred():
    view, proj = center_eye_matrices(Viewport(0, 0, 1920, 1080), DISPLAY, (0.0, 0.0, 0.5))
    assert view[:3, 3] == pytest.approx([0.0, 0.0, -0.5])
    assert proj[0, 2] == pytest.approx(0.0)
    assert proj[1, 2] == pytest.approx(0.0)
    # screen corners land on the frustum corners
    assert _ndc(proj @ view, (0.26, 0.145, 0.0))[:2] == pytest.approx([1.0, 1.0])


def test_center_eye_requires_eye_in_front():
    with pytest.raises(ValueError):
        center_eye_matrices(Viewport(0, 0, 100, 100), DISPLAY, (0.0, 0.0, 0.0))


def test_mask_vertices_layout():
    verts = mask_vertices((0.2, 0.1), cube_side=10.0)
    assert verts.shape == (MASK_VERTS, 3)
    assert verts.dtype == np.float32

    front = verts[:16].reshape(4, 4, 3)
    assert np.all(front[:, :, 2] == 0.0)

    def area(quad):
        x, y = quad[:, 0].astype(np.float64), quad[:, 1].astype(np.float64)
        return 0.5 * abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))

    # the four screen-plane quads tile the cube face minus the viewport hole
    assert sum(area(q) for q in front) == pytest.approx(100.0 - 0.02, rel=1e-5)
    # sides and top/bottom reach back one full cube side
    assert verts[16:, 2].max() == pytest.approx(10.0)


def test_compute_ar_geometry_maps_viewport_centre_into_view():
    pose = np.linalg.inv(look_at((0.0, 0.0, 0.6), (0.0, 0.0, 0.0), (0.0, 1.0, 0.0)))
    geom = compute_ar_geometry(
        INTR, pose, (640, 480), Viewport(0, 0, 1920, 1080), DISPLAY,
        np.eye(4), np.eye(4),
    )
    # camera straight in front of the display centre sees the viewport centre mid-image
    assert _ndc(geom.mask_transform, (0.0, 0.0, 0.0))[:2] == pytest.approx([0.0, 0.0], abs=1e-9)
    assert geom.camera_view == pytest.approx(np.linalg.inv(pose))
    assert geom.mask_vertices.shape == (MASK_VERTS, 3)


def test_module_source_compiles_without_warnings():
    with open(geometry.__file__, encoding="utf-8") as fh:
        source = fh.read()
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(source, geometry.__file__, "exec")
