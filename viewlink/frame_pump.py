"""Per-tick image transfer for the active session.

Standard mode
    grab a free outgoing slot (skip the tick if the viewer is behind), tag
    it with the local frame counter, render, read back and send.

Augmented reality mode
    receive the viewer's webcam frame first (skip the tick if none has
    arrived), take pose + intrinsics + tag and release it straight away,
    render mask and scene for that camera, then send the result tagged
    with the *received* frame number.

Dropped ticks are never queued or retried.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .errors import TransportError
from .geometry import CameraIntrinsics, compute_ar_geometry
from .modes import Mode
from .renderer import SceneRenderer
from .session import EngineState, Session
from .settings import SettingKey
from .tracking import TrackingProvider
from .transport import U64_MAX, Frame, FrameBufferKey, FrameDataKey, SessionState

logger = logging.getLogger(__name__)

# poses worse conditioned than this are treated as singular
MAX_POSE_CONDITION = 1e12


class PumpResult(Enum):
    SENT = "sent"
    NO_OUTGOING_SLOT = "no_outgoing_slot"
    NO_INCOMING_FRAME = "no_incoming_frame"
    IDLE = "idle"


@dataclass(frozen=True)
class ArCameraFrame:
    """What one incoming AR frame tells us about the viewer's webcam."""

    frame_number: int
    pose: np.ndarray
    intrinsics: CameraIntrinsics

    @classmethod
    def read(cls, frame: Frame) -> "ArCameraFrame":
        """Pull the webcam tag, pose and intrinsics off *frame*.

        Raises :class:`TransportError` when the viewer sent something we
        cannot render with (missing fields, non-finite numbers, a pose that
        cannot be inverted, non-positive focal length, aspect or principal
        point).
        """
        pose = np.array(frame.get_data(FrameDataKey.CAMERA_POSE), dtype=np.float64)
        if pose.shape != (4, 4) or not np.isfinite(pose).all():
            raise TransportError("get_frame_data", "camera pose is not a finite 4x4 matrix")
        cond = np.linalg.cond(pose)
        if not np.isfinite(cond) or cond > MAX_POSE_CONDITION:
            raise TransportError("get_frame_data", "camera pose is not invertible")

        intrinsics = CameraIntrinsics(
            focal_length=frame.get_data(FrameDataKey.CAMERA_FOCAL_LENGTH),
            principal_point_x=frame.get_data(FrameDataKey.CAMERA_PRINCIPAL_POINT_OFFSET_X),
            principal_point_y=frame.get_data(FrameDataKey.CAMERA_PRINCIPAL_POINT_OFFSET_Y),
            pixel_aspect_ratio=frame.get_data(FrameDataKey.CAMERA_PIXEL_ASPECT_RATIO),
            axis_skew=frame.get_data(FrameDataKey.CAMERA_AXIS_SKEW),
        )
        for name in ("focal_length", "principal_point_x", "principal_point_y",
                     "pixel_aspect_ratio"):
            value = getattr(intrinsics, name)
            if not (math.isfinite(value) and value > 0.0):
                raise TransportError("get_frame_data",
                                     f"camera {name} must be positive, got {value!r}")
        if not math.isfinite(intrinsics.axis_skew):
            raise TransportError("get_frame_data",
                                 f"camera axis skew must be finite, got {intrinsics.axis_skew!r}")

        return cls(
            frame_number=frame.get_data(FrameDataKey.FRAME_NUMBER),
            pose=pose,
            intrinsics=intrinsics,
        )


class FramePump:

    def __init__(self, state: EngineState, tracking: TrackingProvider, renderer: SceneRenderer):
        self.state = state
        self.tracking = tracking
        self.renderer = renderer
        self.last_result = PumpResult.IDLE

    def pump(self) -> PumpResult:
        session = self.state.active
        if session is None or session.state is not SessionState.MODE_ACTIVE:
            result = PumpResult.IDLE
        elif session.mode is Mode.STANDARD:
            result = self._pump_standard(session)
        elif session.mode is Mode.AUGMENTED_REALITY:
            result = self._pump_ar(session)
        else:
            result = PumpResult.IDLE
        if result is PumpResult.SENT:
            self.state.frames_sent += 1
        elif result is not self.last_result:
            logger.debug("Frame pump: %s", result.value)
        self.last_result = result
        return result

    # ------------------------------------------------------------------
    # Standard
    # ------------------------------------------------------------------

    def _pump_standard(self, session: Session) -> PumpResult:
        st = self.state
        res = st.resources.standard
        if res is None:
            return PumpResult.IDLE
        transport = st.transport

        frame = transport.next_frame_to_send(session.handle)
        if frame is None:
            return PumpResult.NO_OUTGOING_SLOT

        frame.set_data(FrameDataKey.FRAME_NUMBER, res.frame_number)
        cfg = st.cfg.ar
        res.view = self.tracking.center_eye(st.viewport, cfg.near_clip, cfg.far_clip)
        self.renderer.draw_standard(res.surface, res.view)
        res.surface.read_pixels(Mode.STANDARD.descriptor.row_order,
                                dst=frame.buffer(FrameBufferKey.IMAGE_COLOR_0))
        transport.send_frame(frame)
        res.frame_number = (res.frame_number + 1) & U64_MAX
        st.last_frame = res.surface.color

        self._sync_resolution(session)
        return PumpResult.SENT

    def _sync_resolution(self, session: Session):
        """Push a new image size when the local viewport has been resized."""
        settings = session.settings
        width, height = self.state.viewport.size
        current = (settings.get(SettingKey.IMAGE_WIDTH), settings.get(SettingKey.IMAGE_HEIGHT))
        if current == (width, height):
            return
        with settings.batch():
            settings.set(SettingKey.IMAGE_WIDTH, width)
            settings.set(SettingKey.IMAGE_HEIGHT, height)
        logger.info("Standard mode image size %dx%d => %dx%d", *current, width, height)

    # ------------------------------------------------------------------
    # Augmented reality
    # ------------------------------------------------------------------

    def _pump_ar(self, session: Session) -> PumpResult:
        st = self.state
        res = st.resources.ar
        if res is None:
            return PumpResult.IDLE
        transport = st.transport

        incoming = transport.receive_frame(session.handle)
        if incoming is None:
            return PumpResult.NO_INCOMING_FRAME
        try:
            camera = ArCameraFrame.read(incoming)
        finally:
            transport.release_frame(incoming)

        cfg = st.cfg.ar
        vp = st.viewport
        geom = compute_ar_geometry(
            camera.intrinsics,
            camera.pose,
            (res.width, res.height),
            vp,
            self.tracking.display_at(vp.x, vp.y),
            self.tracking.display_to_camera(),
            self.renderer.inv_camera_transform,
            near=cfg.near_clip,
            far=cfg.far_clip,
            cube_side=cfg.mask_cube_side,
        )
        res.mask_vertices[:] = geom.mask_vertices
        geom.mask_vertices = res.mask_vertices
        self.renderer.draw_ar(res.surface, geom, st.draw_mask, st.draw_background)

        frame = transport.next_frame_to_send(session.handle)
        if frame is None:
            return PumpResult.NO_OUTGOING_SLOT
        frame.set_data(FrameDataKey.FRAME_NUMBER, camera.frame_number)
        res.surface.read_pixels(Mode.AUGMENTED_REALITY.descriptor.row_order,
                                dst=frame.buffer(FrameBufferKey.IMAGE_COLOR_0))
        transport.send_frame(frame)
        st.last_frame = res.surface.color
        return PumpResult.SENT
