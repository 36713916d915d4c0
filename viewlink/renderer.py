"""Software renderer – colour, depth & stencil on numpy buffers.

There is no GPU in the loop: polygons are clipped in homogeneous clip
space, projected to pixels and filled with ``cv2.fillConvexPoly`` inside
their bounding box.  Depth is interpolated exactly per pixel (NDC depth
of a planar polygon is affine in screen space) and compared against a
float32 depth buffer; an 8-bit stencil buffer supports the AR mask.

Buffers
-------
:class:`RenderSurface` owns pre-allocated ``(H, W, 4)`` RGBA colour,
``(H, W)`` depth and stencil arrays that are cleared and reused every
frame.  Row 0 is the *top* of the image; :meth:`RenderSurface.read_pixels`
flips on the way out when the viewer wants bottom-to-top rows.

Augmented-reality pass order
----------------------------
1. mask into depth + stencil (colour untouched),
2. background where stencil == 0 (optional),
3. mask visualisation with LEQUAL depth (optional),
4. scene with the normal LESS depth test.
"""

from __future__ import annotations

import math
from enum import Enum

import cv2
import numpy as np

from .config import ArCfg, SceneCfg
from .geometry import BACKGROUND_QUAD, MASK_QUADS, ArGeometry, look_at
from .modes import RowOrder
from .tracking import ViewContext

# ---------------------------------------------------------------------------
# Colours (RGBA)
# ---------------------------------------------------------------------------

TRANSPARENT = (0, 0, 0, 0)
MASK_COLOR = (255, 0, 255, 96)
STYLUS_COLOR = (255, 255, 255, 255)
CUBE_FACE_COLORS = (
    (230, 60, 60, 255),    # +X
    (60, 200, 60, 255),    # -X
    (60, 90, 230, 255),    # +Y
    (230, 210, 60, 255),   # -Y
    (200, 60, 200, 255),   # +Z
    (60, 200, 200, 255),   # -Z
)

# Clip-space planes as (axis, sign): keep  w + sign * v[axis] >= 0
_CLIP_PLANES = ((0, 1), (0, -1), (1, 1), (1, -1), (2, 1))


class DepthTest(Enum):
    NONE = "none"
    LESS = "less"
    LEQUAL = "lequal"


# ---------------------------------------------------------------------------
# Surface
# ---------------------------------------------------------------------------

class RenderSurface:
    """Off-screen render target with a shared depth/stencil buffer."""

    def __init__(self, width: int, height: int):
        if width <= 0 or height <= 0:
            raise ValueError(f"surface size must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self.color = np.zeros((height, width, 4), dtype=np.uint8)
        self.depth = np.ones((height, width), dtype=np.float32)
        self.stencil = np.zeros((height, width), dtype=np.uint8)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def clear(self, color=TRANSPARENT, depth: bool = True, stencil: bool = True):
        self.color[:] = color
        if depth:
            self.depth.fill(1.0)
        if stencil:
            self.stencil.fill(0)

    def read_pixels(self, row_order: RowOrder = RowOrder.TOP_TO_BOTTOM,
                    dst: np.ndarray | None = None) -> np.ndarray:
        """Copy the colour buffer out in *row_order*, into *dst* if given."""
        src = self.color[::-1] if row_order is RowOrder.BOTTOM_TO_TOP else self.color
        if dst is None:
            return src.copy()
        if dst.shape != src.shape:
            raise ValueError(f"destination shape {dst.shape} != surface {src.shape}")
        np.copyto(dst, src)
        return dst


# ---------------------------------------------------------------------------
# Rasterisation primitives
# ---------------------------------------------------------------------------

def to_clip(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Transform ``(N, 3)`` points by a 4×4 matrix into ``(N, 4)`` clip coords."""
    pts = np.asarray(points, dtype=np.float64)
    homo = np.hstack([pts, np.ones((pts.shape[0], 1))])
    return homo @ matrix.T


def clip_polygon(poly: np.ndarray) -> np.ndarray:
    """Sutherland–Hodgman against the side and near planes of the frustum."""
    out = poly
    for axis, sign in _CLIP_PLANES:
        if len(out) == 0:
            break
        dist = out[:, 3] + sign * out[:, axis]
        kept = []
        n = len(out)
        for i in range(n):
            a, b = out[i], out[(i + 1) % n]
            da, db = dist[i], dist[(i + 1) % n]
            if da >= 0:
                kept.append(a)
            if (da >= 0) != (db >= 0):
                t = da / (da - db)
                kept.append(a + t * (b - a))
        out = np.asarray(kept).reshape(-1, 4)
    return out


def clip_segment(a: np.ndarray, b: np.ndarray):
    """Parametric clip of a clip-space segment; ``None`` when fully outside."""
    t0, t1 = 0.0, 1.0
    for axis, sign in _CLIP_PLANES:
        da = a[3] + sign * a[axis]
        db = b[3] + sign * b[axis]
        if da < 0 and db < 0:
            return None
        if da < 0:
            t0 = max(t0, da / (da - db))
        elif db < 0:
            t1 = min(t1, da / (da - db))
    if t0 > t1:
        return None
    d = b - a
    return a + t0 * d, a + t1 * d


def _to_window(clip: np.ndarray, width: int, height: int) -> np.ndarray:
    """Clip coords → ``(N, 3)`` window coords (x px, y px top-down, depth 0..1)."""
    ndc = clip[:, :3] / clip[:, 3:4]
    win = np.empty_like(ndc)
    win[:, 0] = (ndc[:, 0] + 1.0) * 0.5 * width
    win[:, 1] = (1.0 - ndc[:, 1]) * 0.5 * height
    win[:, 2] = (ndc[:, 2] + 1.0) * 0.5
    return win


def _depth_pass(region_depth: np.ndarray, frag_depth: np.ndarray, test: DepthTest) -> np.ndarray:
    if test is DepthTest.LESS:
        return frag_depth < region_depth
    if test is DepthTest.LEQUAL:
        return frag_depth <= region_depth
    return np.ones(region_depth.shape, dtype=bool)


def _write(surface: RenderSurface, ys: slice, xs: slice, cover: np.ndarray,
           frag_depth: np.ndarray, color, depth_test: DepthTest, write_color: bool,
           write_depth: bool, stencil_ref: int | None, stencil_equal: int | None):
    region_depth = surface.depth[ys, xs]
    passed = cover & _depth_pass(region_depth, frag_depth, depth_test)
    if stencil_equal is not None:
        passed &= surface.stencil[ys, xs] == stencil_equal
    if not passed.any():
        return
    if write_color:
        surface.color[ys, xs][passed] = color
    if write_depth:
        region_depth[passed] = frag_depth[passed]
    if stencil_ref is not None:
        surface.stencil[ys, xs][passed] = stencil_ref


def fill_polygon(
    surface: RenderSurface,
    clip: np.ndarray,
    color=TRANSPARENT,
    depth_test: DepthTest = DepthTest.LESS,
    write_color: bool = True,
    write_depth: bool = True,
    stencil_ref: int | None = None,
    stencil_equal: int | None = None,
):
    """Rasterise one convex polygon given in clip space."""
    poly = clip_polygon(np.asarray(clip, dtype=np.float64))
    poly = poly[poly[:, 3] > 1e-9]
    if len(poly) < 3:
        return
    win = _to_window(poly, surface.width, surface.height)

    x0 = max(int(math.floor(win[:, 0].min())), 0)
    x1 = min(int(math.ceil(win[:, 0].max())) + 1, surface.width)
    y0 = max(int(math.floor(win[:, 1].min())), 0)
    y1 = min(int(math.ceil(win[:, 1].max())) + 1, surface.height)
    if x0 >= x1 or y0 >= y1:
        return

    scratch = np.zeros((y1 - y0, x1 - x0), dtype=np.uint8)
    pts = np.round(win[:, :2] - (x0, y0)).astype(np.int32)
    cv2.fillConvexPoly(scratch, pts, 1)
    cover = scratch.astype(bool)
    if not cover.any():
        return

    # depth plane z = a*x + b*y + c through the window-space vertices
    design = np.column_stack([win[:, 0], win[:, 1], np.ones(len(win))])
    coef = np.linalg.lstsq(design, win[:, 2], rcond=None)[0]
    gy, gx = np.mgrid[y0:y1, x0:x1]
    frag = (coef[0] * (gx + 0.5) + coef[1] * (gy + 0.5) + coef[2]).astype(np.float32)
    np.clip(frag, 0.0, 1.0, out=frag)

    _write(surface, slice(y0, y1), slice(x0, x1), cover, frag, color,
           depth_test, write_color, write_depth, stencil_ref, stencil_equal)


def draw_line(surface: RenderSurface, a_clip: np.ndarray, b_clip: np.ndarray,
              color, thickness: int = 2, depth_test: DepthTest = DepthTest.LESS):
    seg = clip_segment(np.asarray(a_clip, dtype=np.float64), np.asarray(b_clip, dtype=np.float64))
    if seg is None:
        return
    win = _to_window(np.vstack(seg), surface.width, surface.height)
    scratch = np.zeros((surface.height, surface.width), dtype=np.uint8)
    pa = tuple(int(round(v)) for v in win[0, :2])
    pb = tuple(int(round(v)) for v in win[1, :2])
    cv2.line(scratch, pa, pb, 1, thickness)
    cover = scratch.astype(bool)

    # depth along the segment by projecting each pixel onto it
    d = win[1, :2] - win[0, :2]
    length2 = float(d @ d)
    gy, gx = np.mgrid[0:surface.height, 0:surface.width]
    if length2 > 0:
        t = ((gx + 0.5 - win[0, 0]) * d[0] + (gy + 0.5 - win[0, 1]) * d[1]) / length2
        np.clip(t, 0.0, 1.0, out=t)
    else:
        t = np.zeros(gx.shape)
    frag = (win[0, 2] + t * (win[1, 2] - win[0, 2])).astype(np.float32)

    full = slice(0, None)
    _write(surface, full, full, cover, frag, color, depth_test, True, True, None, None)


# ---------------------------------------------------------------------------
# Scene
# ---------------------------------------------------------------------------

def cube_faces(half: float) -> np.ndarray:
    """Six ``(4, 3)`` faces of an axis-aligned cube centred on the origin."""
    h = half
    return np.array([
        [(h, -h, -h), (h, h, -h), (h, h, h), (h, -h, h)],        # +X
        [(-h, -h, h), (-h, h, h), (-h, h, -h), (-h, -h, -h)],    # -X
        [(-h, h, h), (h, h, h), (h, h, -h), (-h, h, -h)],        # +Y
        [(-h, -h, -h), (h, -h, -h), (h, -h, h), (-h, -h, h)],    # -Y
        [(-h, -h, h), (h, -h, h), (h, h, h), (-h, h, h)],        # +Z
        [(h, -h, -h), (-h, -h, -h), (-h, h, -h), (h, h, -h)],    # -Z
    ], dtype=np.float64)


class SceneRenderer:
    """Draws the demo scene (cube + stylus) into a :class:`RenderSurface`.

    Owns the orbiting scene camera: ``camera_transform`` maps world space
    into tracker camera space and is refreshed by :meth:`update`.
    """

    def __init__(self, scene_cfg: SceneCfg, ar_cfg: ArCfg):
        self.cfg = scene_cfg
        self.ar_cfg = ar_cfg
        self.orbit = scene_cfg.orbit
        self.angle = 0.0                 # degrees
        self._faces = cube_faces(scene_cfg.cube_half_size)
        self.camera_transform = np.eye(4)
        self.inv_camera_transform = np.eye(4)
        self.stylus_world_pose = np.eye(4)
        self._update_camera()

    # ------------------------------------------------------------------
    # Per-tick state
    # ------------------------------------------------------------------

    def toggle_orbit(self) -> bool:
        self.orbit = not self.orbit
        return self.orbit

    def _update_camera(self):
        theta = math.radians(self.angle)
        eye = (0.222 * math.sin(theta), 0.345, 0.222 * math.cos(theta))
        self.camera_transform = look_at(eye, (0.0, 0.0, 0.0), (0.0, 1.0, 0.0))
        self.inv_camera_transform = np.linalg.inv(self.camera_transform)

    def update(self, dt: float, stylus_pose_camera: np.ndarray):
        """Recompute the orbit camera and stylus world pose, then advance the orbit."""
        self._update_camera()
        self.stylus_world_pose = self.inv_camera_transform @ stylus_pose_camera
        if self.orbit:
            self.angle = (self.angle + self.cfg.rotation_per_second * dt) % 360.0

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def draw_scene(self, surface: RenderSurface, view: np.ndarray, projection: np.ndarray):
        """Cube at the world origin plus the stylus beam, depth tested."""
        view_proj = projection @ view
        for face, color in zip(self._faces, CUBE_FACE_COLORS):
            fill_polygon(surface, to_clip(view_proj, face), color)

        beam = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, -self.cfg.stylus_length]])
        a, b = to_clip(view_proj @ self.stylus_world_pose, beam)
        draw_line(surface, a, b, STYLUS_COLOR)

    def draw_standard(self, surface: RenderSurface, ctx: ViewContext):
        surface.clear(tuple(self.cfg.standard_clear_color))
        self.draw_scene(surface, ctx.view @ self.camera_transform, ctx.projection)

    def draw_mask(self, surface: RenderSurface, geom: ArGeometry, visualize: bool = False):
        quads = geom.mask_vertices.reshape(MASK_QUADS, 4, 3)
        for quad in quads:
            clip = to_clip(geom.mask_transform, quad)
            if visualize:
                fill_polygon(surface, clip, MASK_COLOR, depth_test=DepthTest.LEQUAL)
            else:
                fill_polygon(surface, clip, depth_test=DepthTest.LESS,
                             write_color=False, stencil_ref=1)

    def draw_background(self, surface: RenderSurface, color):
        clip = np.hstack([BACKGROUND_QUAD, np.ones((4, 1), dtype=np.float32)])
        fill_polygon(surface, clip, color, depth_test=DepthTest.NONE,
                     write_depth=False, stencil_equal=0)

    def draw_ar(self, surface: RenderSurface, geom: ArGeometry,
                draw_mask: bool = False, draw_background: bool = True):
        # pass 1: depth + stencil only
        surface.clear(TRANSPARENT)
        self.draw_mask(surface, geom)
        # pass 2: colour, reusing depth/stencil
        if draw_background:
            self.draw_background(surface, tuple(self.ar_cfg.background_color))
        if draw_mask:
            self.draw_mask(surface, geom, visualize=True)
        self.draw_scene(surface, geom.camera_view, geom.projection)
