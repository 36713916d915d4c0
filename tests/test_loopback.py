from __future__ import annotations

import pytest

from viewlink.errors import TransportError
from viewlink.loopback import LoopbackTransport
from viewlink.settings import SettingKey
from viewlink.transport import FrameDataKey, SessionState


def test_connect_requires_listening(cfg):
    with pytest.raises(TransportError):
        LoopbackTransport(cfg.loopback).connect_to_default_viewer()


def test_injected_failures_count_down(transport):
    transport.fail_on("update_session_list", times=2, code=5)
    for _ in range(2):
        with pytest.raises(TransportError) as err:
            transport.update_session_list()
        assert err.value.code == 5
        assert err.value.op == "update_session_list"
    assert transport.update_session_list() == []


def test_viewer_walks_to_awaiting(transport):
    handle = transport.connect_to_default_viewer()
    assert transport.get_state(handle) is SessionState.INITIALIZING
    transport.update_session_list()
    assert transport.get_state(handle) is SessionState.AWAITING_ACCEPTANCE
    transport.update_session_list()
    assert transport.get_state(handle) is SessionState.AWAITING_ACCEPTANCE


def test_frame_requires_active_session(transport):
    handle = transport.connect_to_default_viewer()
    with pytest.raises(TransportError):
        transport.next_frame_to_send(handle)


def test_settings_batch_nesting(transport):
    handle = transport.connect_to_default_viewer()
    transport.begin_settings_batch(handle)
    with pytest.raises(TransportError):
        transport.begin_settings_batch(handle)
    transport.set_setting(handle, SettingKey.IMAGE_WIDTH, 10)
    assert transport.get_setting(handle, SettingKey.IMAGE_WIDTH) == 0
    transport.end_settings_batch(handle)
    assert transport.get_setting(handle, SettingKey.IMAGE_WIDTH) == 10


def test_camera_frame_overrides(transport):
    handle = transport.connect_to_default_viewer()
    tag = transport.push_camera_frame(handle, camera_focal_length=123.0)
    frame = transport.receive_frame(handle)
    assert frame.get_data(FrameDataKey.FRAME_NUMBER) == tag == 1
    assert frame.get_data(FrameDataKey.CAMERA_FOCAL_LENGTH) == 123.0
    with pytest.raises(TransportError):
        transport.receive_frame(handle)
    transport.release_frame(frame)
    assert transport.receive_frame(handle) is None


def test_unknown_session(transport):
    with pytest.raises(TransportError):
        transport.get_state(99)
