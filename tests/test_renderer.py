from __future__ import annotations

import numpy as np
import pytest

from viewlink.config import ArCfg, SceneCfg
from viewlink.geometry import ArGeometry, frustum, look_at, mask_vertices, translate
from viewlink.modes import RowOrder
from viewlink.renderer import (
    CUBE_FACE_COLORS,
    DepthTest,
    RenderSurface,
    SceneRenderer,
    clip_polygon,
    fill_polygon,
)

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)


def _quad(z: float, half: float = 0.5) -> np.ndarray:
    """Clip-space square centred on screen at NDC depth *z*."""
    return np.array([
        [-half, -half, z, 1.0],
        [half, -half, z, 1.0],
        [half, half, z, 1.0],
        [-half, half, z, 1.0],
    ])


def test_surface_rejects_empty_size():
    with pytest.raises(ValueError):
        RenderSurface(0, 10)


def test_read_pixels_row_order():
    surface = RenderSurface(4, 3)
    surface.color[0] = (1, 2, 3, 4)
    top_down = surface.read_pixels(RowOrder.TOP_TO_BOTTOM)
    bottom_up = surface.read_pixels(RowOrder.BOTTOM_TO_TOP)
    assert tuple(top_down[0, 0]) == (1, 2, 3, 4)
    assert tuple(bottom_up[-1, 0]) == (1, 2, 3, 4)
    assert not bottom_up[0].any()


def test_read_pixels_into_buffer():
    surface = RenderSurface(4, 3)
    surface.clear(RED)
    dst = np.zeros((3, 4, 4), dtype=np.uint8)
    assert surface.read_pixels(dst=dst) is dst
    assert (dst == RED).all()
    with pytest.raises(ValueError):
        surface.read_pixels(dst=np.zeros((4, 3, 4), dtype=np.uint8))


def test_clip_polygon_outside_is_empty():
    assert len(clip_polygon(_quad(0.0) + [3.0, 0.0, 0.0, 0.0])) == 0


def test_depth_test_keeps_nearest():
    surface = RenderSurface(16, 16)
    fill_polygon(surface, _quad(-0.5), RED)
    fill_polygon(surface, _quad(0.5), GREEN)
    assert tuple(surface.color[8, 8]) == RED
    assert surface.depth[8, 8] == pytest.approx(0.25)
    # outside the quad nothing was touched
    assert not surface.color[0, 0].any()


def test_depth_modes():
    surface = RenderSurface(16, 16)
    fill_polygon(surface, _quad(0.0), RED)
    fill_polygon(surface, _quad(0.0), GREEN, depth_test=DepthTest.LESS)
    assert tuple(surface.color[8, 8]) == RED
    fill_polygon(surface, _quad(0.0), GREEN, depth_test=DepthTest.LEQUAL)
    assert tuple(surface.color[8, 8]) == GREEN
    fill_polygon(surface, _quad(0.9), RED, depth_test=DepthTest.NONE)
    assert tuple(surface.color[8, 8]) == RED


def test_stencil_write_and_test():
    surface = RenderSurface(16, 16)
    fill_polygon(surface, _quad(0.0), write_color=False, stencil_ref=1)
    assert surface.stencil[8, 8] == 1
    assert not surface.color[8, 8].any()

    full = _quad(0.0, half=1.0)
    fill_polygon(surface, full, GREEN, depth_test=DepthTest.NONE, write_depth=False,
                 stencil_equal=0)
    assert tuple(surface.color[0, 0]) == GREEN
    assert not surface.color[8, 8].any()


def _renderer() -> SceneRenderer:
    scene = SceneCfg(orbit=False)
    return SceneRenderer(scene, ArCfg())


def test_scene_cube_faces_viewer():
    renderer = _renderer()
    surface = RenderSurface(64, 64)
    view = look_at((0.0, 0.0, 0.2), (0.0, 0.0, 0.0), (0.0, 1.0, 0.0))
    proj = frustum(-0.05, 0.05, -0.05, 0.05, 0.1, 10.0)
    renderer.draw_scene(surface, view, proj)
    # +Z face is the one pointing at the eye; the stylus beam is behind it
    assert tuple(surface.color[32, 32]) == CUBE_FACE_COLORS[4]
    assert surface.depth[32, 32] < 1.0
    assert not surface.color[0, 0].any()


def test_orbit_advances_only_when_enabled():
    renderer = _renderer()
    renderer.update(1.0, np.eye(4))
    assert renderer.angle == 0.0
    assert renderer.toggle_orbit()
    renderer.update(1.0, np.eye(4))
    assert renderer.angle == pytest.approx(45.0)
    assert renderer.camera_transform @ renderer.inv_camera_transform == pytest.approx(np.eye(4))


def _mask_geometry() -> ArGeometry:
    proj = frustum(-0.1, 0.1, -0.1, 0.1, 0.1, 100.0)
    return ArGeometry(
        projection=proj,
        # scene well outside the frame
        camera_view=translate((20.0, 0.0, -1.0)),
        # viewport one metre in front of the camera
        mask_transform=proj @ translate((0.0, 0.0, -1.0)),
        mask_vertices=mask_vertices((0.5, 0.5), cube_side=10.0),
    )


def test_mask_fills_depth_and_stencil_around_viewport():
    renderer = _renderer()
    surface = RenderSurface(64, 64)
    renderer.draw_mask(surface, _mask_geometry())
    assert surface.stencil[32, 32] == 0
    assert surface.stencil[2, 2] == 1
    assert surface.depth[2, 2] < 1.0
    assert not surface.color.any()


def test_ar_passes():
    renderer = _renderer()
    surface = RenderSurface(64, 64)
    background = (0, 0, 0, 255)
    renderer.draw_ar(surface, _mask_geometry(), draw_mask=False, draw_background=True)
    # background only shows through the viewport hole
    assert tuple(surface.color[32, 32]) == background
    assert not surface.color[2, 2].any()

    renderer.draw_ar(surface, _mask_geometry(), draw_mask=True, draw_background=False)
    assert surface.color[2, 2].any()
    assert not surface.color[32, 32].any()
