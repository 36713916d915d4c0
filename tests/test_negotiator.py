from __future__ import annotations

import logging

from viewlink.modes import Mode
from viewlink.negotiator import SETUP_TIMEOUT_MESSAGE
from viewlink.settings import SettingKey
from viewlink.transport import CloseAction, CloseReason, SessionState, SetupPhase


def test_standard_initialization_publishes_viewport_size_as_one_batch(make_engine):
    engine = make_engine()
    for _ in range(3):
        engine.tick()

    assert engine.state.active.state is SessionState.MODE_SETUP
    assert engine.transport.commits == [{SettingKey.IMAGE_WIDTH: 64, SettingKey.IMAGE_HEIGHT: 48}]
    remote = engine.transport.sessions[engine.state.active_handle]
    assert (remote.phase, remote.awaiting) == (SetupPhase.INITIALIZATION, True)


def test_standard_completion_allocates_target(make_engine):
    engine = make_engine()
    for _ in range(4):
        engine.tick()

    res = engine.state.resources.standard
    assert (res.width, res.height) == (64, 48)
    assert res.view is not None
    assert res.view.viewport == engine.state.viewport
    assert engine.state.latest_mode is Mode.STANDARD


def test_ar_completion_uses_viewer_image_size(make_engine):
    engine = make_engine(auto_mode="augmented-reality")
    for _ in range(4):
        engine.tick()

    assert engine.state.resources.standard is None
    res = engine.state.resources.ar
    assert (res.width, res.height) == (80, 60)
    assert res.mask_vertices.shape == (32, 3)
    # nothing was pushed by the presenter in AR setup
    assert engine.transport.commits == []


def test_setup_waits_for_slow_viewer(make_engine, run_until):
    engine = make_engine(remote_delay_ticks=3)
    run_until(engine, lambda e: e.state.active is not None
              and e.state.active.state is SessionState.MODE_ACTIVE)
    assert engine.ticks > 5


def test_setup_times_out(make_engine, caplog):
    engine = make_engine(remote_delay_ticks=10)
    engine.cfg.engine.setup_timeout_ticks = 2
    handle = 1
    remote = engine.transport.sessions[handle]

    with caplog.at_level(logging.ERROR, logger="viewlink.negotiator"):
        for _ in range(6):
            engine.tick()

    assert remote.closed_with[1] is CloseReason.ERROR
    assert remote.closed_with[2] == SETUP_TIMEOUT_MESSAGE
    assert "stalled" in caplog.text

    engine.tick()
    assert engine.state.active is None
    assert handle not in engine.transport.sessions


def test_unknown_mode_is_ignored(make_engine, caplog):
    engine = make_engine(auto_mode="")
    engine.tick()
    engine.tick()
    remote = engine.transport.sessions[engine.state.active_handle]
    remote.mode = "hologram/v7"
    remote.state = SessionState.MODE_SETUP

    with caplog.at_level(logging.WARNING, logger="viewlink.negotiator"):
        engine.tick()

    assert "unknown mode" in caplog.text
    assert remote.awaiting is False
    assert engine.state.resources.for_mode(Mode.STANDARD) is None
    assert engine.state.latest_mode is None


def test_mode_change_releases_previous_resources(active_engine):
    engine = active_engine()
    handle = engine.state.active_handle
    ar_handle = engine.state.catalog.handle_for(Mode.AUGMENTED_REALITY)

    engine.transport.set_mode(handle, ar_handle)
    engine.tick()
    assert engine.state.resources.standard is None
    assert engine.state.latest_mode is Mode.AUGMENTED_REALITY
    assert engine.state.active.mode is Mode.AUGMENTED_REALITY


def test_zero_image_size_from_viewer_closes_session(make_engine, caplog):
    engine = make_engine(auto_mode="augmented-reality", ar_image_width=0)
    handle = 1
    remote = engine.transport.sessions[handle]

    with caplog.at_level(logging.WARNING, logger="viewlink.session"):
        for _ in range(8):
            engine.tick()

    assert "image size 0x60" in caplog.text
    assert remote.closed_with == (CloseAction.NONE, CloseReason.ERROR,
                                  "Transport failure: get_setting")
    assert engine.state.resources.ar is None
    assert engine.state.active is None
    assert handle not in engine.transport.sessions
