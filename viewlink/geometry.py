r"""Projection and mask geometry for augmented-reality mode.

Everything here is a pure function of its arguments and is recomputed on
every AR tick – camera pose and intrinsics can change from one webcam
frame to the next, so nothing is cached.

Conventions
-----------
Matrices are ``float64`` 4×4 numpy arrays acting on column vectors
(``M @ v``).  Display space has its origin at the centre of the physical
screen, X right, Y up, Z out of the screen, one unit per metre.

Projection
----------
The AR projection combines a perspective matrix built from the webcam
intrinsics with an orthographic matrix that maps image pixels to
normalised device coordinates (see Kyle Simek, "Calibrated cameras in
OpenGL without glFrustum").  The intrinsics describe an image-space
camera (Y down, looking down +Z) so the Y and Z columns are negated to
land in the rendering convention (Y up, looking down -Z).

Mask
----
The mask is a 10 m cube with the face lying in the screen plane replaced
by a picture frame around the local viewport and the opposite face
removed::

     ----------------------------
    |\            (t)          /|
    | \                       / |
    |  -----------------------  |
    |  |   |     (tr)       |  |
    |  |(tl)----------------|  |
    |(l)|  |    (v)    |    |(r)|
    |  |------------   |(br)|  |
    |  |    (bl)    |  |    |  |
    |  -----------------------  |
    | /           (b)         \ |
    |/                         \|
     ----------------------------

Drawn into depth/stencil before the scene, it clips anything behind the
screen plane and outside the viewport while leaving geometry in front of
the screen untouched.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

MASK_QUADS = 8
MASK_VERTS = MASK_QUADS * 4


# ---------------------------------------------------------------------------
# Basic transforms
# ---------------------------------------------------------------------------

def translate(offset) -> np.ndarray:
    m = np.eye(4)
    m[:3, 3] = np.asarray(offset, dtype=np.float64)[:3]
    return m


def look_at(eye, center, up) -> np.ndarray:
    """Right-handed view matrix (same as ``gluLookAt``)."""
    eye = np.asarray(eye, dtype=np.float64)
    f = np.asarray(center, dtype=np.float64) - eye
    f /= np.linalg.norm(f)
    s = np.cross(f, np.asarray(up, dtype=np.float64))
    s /= np.linalg.norm(s)
    u = np.cross(s, f)
    m = np.eye(4)
    m[0, :3] = s
    m[1, :3] = u
    m[2, :3] = -f
    m[0, 3] = -s @ eye
    m[1, 3] = -u @ eye
    m[2, 3] = f @ eye
    return m


def frustum(left: float, right: float, bottom: float, top: float,
            near: float, far: float) -> np.ndarray:
    m = np.zeros((4, 4))
    m[0, 0] = 2.0 * near / (right - left)
    m[0, 2] = (right + left) / (right - left)
    m[1, 1] = 2.0 * near / (top - bottom)
    m[1, 2] = (top + bottom) / (top - bottom)
    m[2, 2] = -(far + near) / (far - near)
    m[2, 3] = -2.0 * far * near / (far - near)
    m[3, 2] = -1.0
    return m


def ortho(left: float, right: float, bottom: float, top: float,
          near: float, far: float) -> np.ndarray:
    m = np.eye(4)
    m[0, 0] = 2.0 / (right - left)
    m[1, 1] = 2.0 / (top - bottom)
    m[2, 2] = -2.0 / (far - near)
    m[0, 3] = -(right + left) / (right - left)
    m[1, 3] = -(top + bottom) / (top - bottom)
    m[2, 3] = -(far + near) / (far - near)
    return m


# ---------------------------------------------------------------------------
# AR projection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CameraIntrinsics:
    focal_length: float
    principal_point_x: float
    principal_point_y: float
    pixel_aspect_ratio: float = 1.0
    axis_skew: float = 0.0


def intrinsics_perspective(intr: CameraIntrinsics, near: float, far: float) -> np.ndarray:
    """Pure perspective matrix for the webcam (pixel units, not NDC)."""
    fx = intr.focal_length
    fy = intr.focal_length * intr.pixel_aspect_ratio
    cx, cy = intr.principal_point_x, intr.principal_point_y
    s = intr.axis_skew
    return np.array([
        [fx,  -s,  -cx,  0.0],
        [0.0, -fy, -cy,  0.0],
        [0.0, 0.0, near + far, near * far],
        [0.0, 0.0, -1.0, 0.0],
    ])


def ar_projection(intr: CameraIntrinsics, image_width: float, image_height: float,
                  near: float = 0.1, far: float = 100.0) -> np.ndarray:
    """Projection matching the viewer's webcam for an image of the given size."""
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"image size must be positive, got {image_width}x{image_height}")
    if not 0.0 < near < far:
        raise ValueError(f"invalid clip planes near={near} far={far}")
    ndc = ortho(0.0, float(image_width), float(image_height), 0.0, near, far)
    return ndc @ intrinsics_perspective(intr, near, far)


# ---------------------------------------------------------------------------
# Viewport placement on the physical display
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Viewport:
    """Local render viewport in virtual-desktop pixels."""
    x: int
    y: int
    width: int
    height: int

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class DisplayInfo:
    """Physical display: desktop position (px), native resolution (px), size (m)."""
    position: tuple[int, int]
    native_resolution: tuple[int, int]
    size_m: tuple[float, float]


def viewport_placement(viewport: Viewport, display: DisplayInfo) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(centre_display_space (3,), size_m (2,))`` for *viewport*."""
    res = np.asarray(display.native_resolution, dtype=np.float64)
    metres_per_px = np.asarray(display.size_m, dtype=np.float64) / res
    display_centre = np.asarray(display.position, dtype=np.float64) + res * 0.5
    vp_centre = np.array([viewport.x + viewport.width * 0.5,
                          viewport.y + viewport.height * 0.5])
    size_m = np.array([viewport.width, viewport.height]) * metres_per_px
    # Desktop Y grows downwards, display space Y grows upwards.
    centre = np.array([
        (vp_centre[0] - display_centre[0]) * metres_per_px[0],
        (display_centre[1] - vp_centre[1]) * metres_per_px[1],
        0.0,
    ])
    return centre, size_m


def center_eye_matrices(viewport: Viewport, display: DisplayInfo, eye_display,
                        near: float = 0.1, far: float = 100.0) -> tuple[np.ndarray, np.ndarray]:
    """Head-tracked off-axis ``(view, projection)`` for the viewport window."""
    centre, size_m = viewport_placement(viewport, display)
    eye = np.asarray(eye_display, dtype=np.float64)
    dist = eye[2] - centre[2]
    if dist <= 0:
        raise ValueError("eye must be in front of the screen plane")
    half = size_m * 0.5
    scale = near / dist
    left = (centre[0] - half[0] - eye[0]) * scale
    right = (centre[0] + half[0] - eye[0]) * scale
    bottom = (centre[1] - half[1] - eye[1]) * scale
    top = (centre[1] + half[1] - eye[1]) * scale
    return translate(-eye), frustum(left, right, bottom, top, near, far)


# ---------------------------------------------------------------------------
# Mask geometry
# ---------------------------------------------------------------------------

def mask_vertices(viewport_size_m, cube_side: float = 10.0) -> np.ndarray:
    """Return the ``(32, 3)`` float32 quad list of the mask in viewport space."""
    hx, hy = np.asarray(viewport_size_m, dtype=np.float64) * 0.5
    c = cube_side * 0.5

    # viewport hole corners
    vp_tl, vp_tr = (-hx, hy, 0.0), (hx, hy, 0.0)
    vp_bl, vp_br = (-hx, -hy, 0.0), (hx, -hy, 0.0)
    # points splitting the screen-plane face around the hole
    split_t, split_b = (-hx, c, 0.0), (hx, -c, 0.0)
    split_l, split_r = (-c, -hy, 0.0), (c, hy, 0.0)
    # screen-plane face corners
    sp_tl, sp_tr = (-c, c, 0.0), (c, c, 0.0)
    sp_bl, sp_br = (-c, -c, 0.0), (c, -c, 0.0)
    # corners of the omitted face
    bk_tl, bk_tr = (-c, c, cube_side), (c, c, cube_side)
    bk_bl, bk_br = (-c, -c, cube_side), (c, -c, cube_side)

    quads = [
        (sp_tl, split_l, vp_bl, split_t),     # screen plane, top-left
        (split_t, vp_tl, split_r, sp_tr),     # screen plane, top-right
        (split_l, sp_bl, split_b, vp_br),     # screen plane, bottom-left
        (vp_tr, split_b, sp_br, split_r),     # screen plane, bottom-right
        (bk_tl, sp_tl, sp_tr, bk_tr),         # top
        (bk_br, sp_br, sp_bl, bk_bl),         # bottom
        (bk_bl, sp_bl, sp_tl, bk_tl),         # left
        (bk_tr, sp_tr, sp_br, bk_br),         # right
    ]
    return np.asarray(quads, dtype=np.float32).reshape(MASK_VERTS, 3)


BACKGROUND_QUAD = np.array([
    [-1.0, -1.0, 0.0],
    [1.0, -1.0, 0.0],
    [1.0, 1.0, 0.0],
    [-1.0, 1.0, 0.0],
], dtype=np.float32)


def camera_view(pose_display: np.ndarray, display_to_camera: np.ndarray,
                inv_camera_transform: np.ndarray) -> np.ndarray:
    """World → AR-webcam view transform from the webcam pose in display space."""
    pose_camera = display_to_camera @ pose_display
    return np.linalg.inv(inv_camera_transform @ pose_camera)


def mask_transform(projection: np.ndarray, view: np.ndarray,
                   inv_camera_transform: np.ndarray, display_to_camera: np.ndarray,
                   viewport_centre) -> np.ndarray:
    """Viewport space → NDC for the mask geometry."""
    return (projection @ view @ inv_camera_transform
            @ display_to_camera @ translate(viewport_centre))


@dataclass
class ArGeometry:
    projection: np.ndarray
    camera_view: np.ndarray
    mask_transform: np.ndarray
    mask_vertices: np.ndarray


def compute_ar_geometry(
    intrinsics: CameraIntrinsics,
    pose_display: np.ndarray,
    image_size: tuple[int, int],
    viewport: Viewport,
    display: DisplayInfo,
    display_to_camera: np.ndarray,
    inv_camera_transform: np.ndarray,
    near: float = 0.1,
    far: float = 100.0,
    cube_side: float = 10.0,
) -> ArGeometry:
    projection = ar_projection(intrinsics, image_size[0], image_size[1], near, far)
    view = camera_view(pose_display, display_to_camera, inv_camera_transform)
    centre, size_m = viewport_placement(viewport, display)
    return ArGeometry(
        projection=projection,
        camera_view=view,
        mask_transform=mask_transform(projection, view, inv_camera_transform,
                                      display_to_camera, centre),
        mask_vertices=mask_vertices(size_m, cube_side),
    )
