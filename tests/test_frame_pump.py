from __future__ import annotations

import math

import numpy as np
import pytest

from viewlink.errors import TransportError
from viewlink.frame_pump import ArCameraFrame, PumpResult
from viewlink.geometry import Viewport
from viewlink.settings import SettingKey
from viewlink.transport import (
    U64_MAX,
    CloseReason,
    Frame,
    FrameBufferKey,
    FrameDataKey,
    SessionState,
)


def _sent_number(engine) -> int:
    return engine.transport.sent_frames[-1].get_data(FrameDataKey.FRAME_NUMBER)


def test_standard_frame_numbers_increase(active_engine):
    engine = active_engine()
    engine.tick()
    engine.tick()
    numbers = [f.get_data(FrameDataKey.FRAME_NUMBER) for f in engine.transport.sent_frames]
    assert numbers == [0, 1, 2]
    assert engine.state.frames_sent == 3


def test_missing_slot_skips_tick_without_advancing_counter(active_engine):
    engine = active_engine()
    engine.transport.set_send_slots(0)
    assert engine.tick() is PumpResult.NO_OUTGOING_SLOT
    assert engine.tick() is PumpResult.NO_OUTGOING_SLOT
    assert engine.frame_number() == 1

    engine.transport.set_send_slots(2)
    assert engine.tick() is PumpResult.SENT
    assert _sent_number(engine) == 1
    assert engine.frame_number() == 2


def test_standard_image_is_sent_bottom_row_first(active_engine):
    engine = active_engine()
    res = engine.state.resources.standard
    buf = engine.transport.sent_frames[-1].buffer(FrameBufferKey.IMAGE_COLOR_0)
    assert buf.shape == (48, 64, 4)
    assert np.array_equal(buf, res.surface.color[::-1])
    assert engine.state.last_frame is res.surface.color


def test_counter_wraps_at_u64(active_engine):
    engine = active_engine()
    engine.state.resources.standard.frame_number = U64_MAX
    engine.tick()
    assert _sent_number(engine) == U64_MAX
    assert engine.frame_number() == 0


def test_viewport_resize_reconfigures_standard_image(active_engine, run_until):
    engine = active_engine()
    handle = engine.state.active_handle
    engine.set_viewport(Viewport(0, 0, 40, 30))
    engine.tick()

    assert engine.transport.commits[-1] == {
        SettingKey.IMAGE_WIDTH: 40,
        SettingKey.IMAGE_HEIGHT: 30,
    }
    assert engine.transport.remote_settings(handle)[SettingKey.IMAGE_WIDTH] == 40

    run_until(engine, lambda e: e.state.active.state is SessionState.PROCESSING_MODE_SETTINGS_CHANGE)
    run_until(engine, lambda e: e.transport.sent_frames[-1]
              .buffer(FrameBufferKey.IMAGE_COLOR_0).shape == (30, 40, 4))
    assert (engine.state.resources.standard.width,
            engine.state.resources.standard.height) == (40, 30)


def test_ar_first_tick_has_no_camera_frame(active_engine):
    engine = active_engine("augmented-reality")
    # the viewer has only just gone active; its first webcam frame is next tick
    assert engine.frame_pump.last_result is PumpResult.NO_INCOMING_FRAME
    assert len(engine.transport.sent_frames) == 0


def test_ar_echoes_received_frame_number(active_engine):
    engine = active_engine("augmented-reality")
    assert engine.tick() is PumpResult.SENT
    assert _sent_number(engine) == 1

    handle = engine.state.active_handle
    manual = engine.transport.push_camera_frame(handle)
    assert engine.tick() is PumpResult.SENT
    assert _sent_number(engine) == manual

    buf = engine.transport.sent_frames[-1].buffer(FrameBufferKey.IMAGE_COLOR_0)
    assert buf.shape == (60, 80, 4)


def test_ar_releases_incoming_frame_before_sending(active_engine):
    engine = active_engine("augmented-reality")
    engine.transport.set_send_slots(0)
    assert engine.tick() is PumpResult.NO_OUTGOING_SLOT
    remote = engine.transport.sessions[engine.state.active_handle]
    assert remote.held_in is None


def test_ar_background_skips_masked_pixels(active_engine):
    engine = active_engine("augmented-reality")
    engine.tick()
    res = engine.state.resources.ar
    background = np.array(engine.cfg.ar.background_color, dtype=np.uint8)
    painted = np.all(res.surface.color == background, axis=-1)
    # the stencil marks every pixel the mask covered; background goes everywhere else
    assert not painted[res.surface.stencil == 1].any()


def test_camera_frame_reader_requires_every_field():
    frame = Frame(("x", 1))
    frame.set_data(FrameDataKey.FRAME_NUMBER, 3)
    with pytest.raises(TransportError) as err:
        ArCameraFrame.read(frame)
    assert err.value.op == "get_frame_data"


def test_transient_resize_failure_is_retried(active_engine):
    engine = active_engine()
    session = engine.state.active
    handle = session.handle
    engine.transport.fail_on("set_setting", times=1)
    engine.set_viewport(Viewport(0, 0, 40, 30))

    assert engine.tick() is PumpResult.IDLE
    assert session.failures == 1
    assert engine.transport.sessions[handle].staged is None
    assert engine.transport.remote_settings(handle)[SettingKey.IMAGE_WIDTH] == 64

    engine.tick()
    assert engine.transport.commits[-1] == {
        SettingKey.IMAGE_WIDTH: 40,
        SettingKey.IMAGE_HEIGHT: 30,
    }
    engine.tick()
    assert engine.state.active is session
    assert session.failures == 0


# ---------------------------------------------------------------------------
# Malformed webcam frames from the viewer
# ---------------------------------------------------------------------------

SINGULAR_POSE = np.zeros((4, 4))
NAN_POSE = np.full((4, 4), np.nan)


@pytest.mark.parametrize("overrides", [
    {"camera_pose": SINGULAR_POSE},
    {"camera_pose": NAN_POSE},
    {"camera_focal_length": math.nan},
    {"camera_focal_length": 0.0},
    {"camera_pixel_aspect_ratio": -1.0},
    {"camera_principal_point_offset_x": math.inf},
    {"camera_principal_point_offset_y": 0.0},
    {"camera_axis_skew": math.nan},
])
def test_bad_camera_frame_counts_as_session_failure(active_engine, overrides):
    engine = active_engine("augmented-reality")
    session = engine.state.active
    remote = engine.transport.sessions[session.handle]
    engine.transport.push_camera_frame(session.handle, **overrides)

    assert engine.tick() is PumpResult.IDLE
    assert session.failures == 1
    assert remote.held_in is None
    assert engine.state.active is session

    # the next good frame goes through
    assert engine.tick() is PumpResult.SENT


def test_bad_camera_frames_exhaust_retry_budget(active_engine):
    engine = active_engine("augmented-reality")
    handle = engine.state.active_handle
    remote = engine.transport.sessions[handle]

    for _ in range(engine.cfg.engine.retry_budget):
        engine.transport.push_camera_frame(handle, camera_pose=SINGULAR_POSE)
        assert engine.tick() is PumpResult.IDLE

    assert remote.closed_with[1] is CloseReason.ERROR
    assert engine.state.active is None
    assert engine.state.resources.ar is None
    assert handle not in engine.transport.sessions


def test_camera_frame_reader_rejects_singular_pose():
    frame = Frame(("x", 1))
    frame.set_data(FrameDataKey.FRAME_NUMBER, 3)
    frame.set_data(FrameDataKey.CAMERA_POSE, SINGULAR_POSE)
    with pytest.raises(TransportError, match="invertible"):
        ArCameraFrame.read(frame)
