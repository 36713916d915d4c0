"""In-process session transport with a simulated viewer on the far end.

Lets the presenter run end to end (and be tested) without a network or a
real viewer.  The simulated viewer advances once per
:meth:`LoopbackTransport.update_session_list` call:

* a new connection reports ``INITIALIZING`` then ``AWAITING_ACCEPTANCE``;
* once accepted it reports ``NO_MODE`` and then picks ``loopback.auto_mode``;
* mode setup walks initialization → completion, the viewer finishing each
  phase ``loopback.remote_delay_ticks`` ticks after the presenter;
* in AR mode the viewer sizes the image and streams webcam frames;
* resizing a Standard mode image while active sends the session back
  through ``PROCESSING_MODE_SETTINGS_CHANGE`` into setup completion.

Test hooks: :meth:`fail_on` (inject transport errors), :meth:`set_send_slots`,
:meth:`push_camera_frame`, :meth:`set_state`, :meth:`inject_recording_error`
and the ``sent_frames`` / ``commits`` records.
"""

from __future__ import annotations

import itertools
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .config import LoopbackCfg
from .errors import TransportError, UnsupportedModeError
from .geometry import look_at
from .modes import Mode, ModeAvailability, ModeDescriptor, SupportedMode
from .settings import SettingKey, coerce_value
from .transport import (
    Capability,
    CloseAction,
    CloseReason,
    Frame,
    FrameBufferKey,
    FrameDataKey,
    RecordingState,
    SessionState,
    SessionTransport,
    SetupPhase,
)

logger = logging.getLogger(__name__)

MAX_MODE_VERSION = 0

DEFAULT_SETTINGS = {
    SettingKey.IMAGE_WIDTH: 0,
    SettingKey.IMAGE_HEIGHT: 0,
    SettingKey.VIDEO_RECORDING_QUALITY: 0,
    SettingKey.OVERLAY_OFFSET_X: 0.0,
    SettingKey.OVERLAY_OFFSET_Y: 0.0,
    SettingKey.OVERLAY_SCALE_X: 1.0,
    SettingKey.OVERLAY_SCALE_Y: 1.0,
}

_SIZE_KEYS = (SettingKey.IMAGE_WIDTH, SettingKey.IMAGE_HEIGHT)


@dataclass
class RemoteSession:
    """Everything the simulated viewer knows about one connection."""

    handle: int
    supported: list[SupportedMode]
    state: SessionState = SessionState.INITIALIZING
    mode: Any = None
    phase: SetupPhase = SetupPhase.INITIALIZATION
    awaiting: bool = False
    remote_wait: int = 0
    accepted: bool = False
    settings: dict = field(default_factory=lambda: dict(DEFAULT_SETTINGS))
    staged: dict | None = None
    resize_pending: bool = False
    in_flight: int = 0
    held_out: Frame | None = None
    held_in: Frame | None = None
    incoming: deque = field(default_factory=lambda: deque(maxlen=2))
    camera_tag: int = 0
    recording: RecordingState = RecordingState.NOT_AVAILABLE
    recording_error: int = 0
    saved_paths: list[str] = field(default_factory=list)
    closed_with: tuple | None = None


class LoopbackTransport(SessionTransport):

    def __init__(self, cfg: LoopbackCfg | None = None):
        self.cfg = cfg or LoopbackCfg()
        self.node_name = ""
        self.node_status = ""
        self.supported_modes: list[SupportedMode] = []
        self.listening = False
        self.shut = False
        self.send_slots = self.cfg.send_slots
        self.sessions: dict[int, RemoteSession] = {}
        self.sent_frames: deque[Frame] = deque(maxlen=64)
        self.commits: list[dict] = []
        self.exit_requested = False
        self._handles = itertools.count(1)
        self._frame_ids = itertools.count(1)
        self._mode_labels: dict[Any, str] = {}
        self._failures: dict[str, list] = {}

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def fail_on(self, op: str, times: int = 1, code: int | None = None):
        """Make the next *times* calls of method *op* raise ``TransportError``."""
        self._failures[op] = [times, code]

    def _check(self, op: str):
        pending = self._failures.get(op)
        if pending and pending[0] > 0:
            pending[0] -= 1
            raise TransportError(op, "injected failure", pending[1])

    def set_send_slots(self, slots: int):
        self.send_slots = slots

    def set_state(self, handle: int, state: SessionState):
        self._session(handle, "set_state").state = state

    def inject_recording_error(self, handle: int, code: int):
        remote = self._session(handle, "inject_recording_error")
        remote.recording = RecordingState.ERROR
        remote.recording_error = code

    def remote_settings(self, handle: int) -> dict:
        return dict(self._session(handle, "remote_settings").settings)

    def push_camera_frame(self, handle: int, **overrides) -> int:
        """Queue one webcam frame for *handle*; returns its frame number."""
        remote = self._session(handle, "push_camera_frame")
        remote.camera_tag += 1
        frame = Frame((handle, next(self._frame_ids)))
        for key, value in self._camera_data(remote).items():
            frame.set_data(key, overrides.get(key.name.lower(), value))
        remote.incoming.append(frame)
        return frame.get_data(FrameDataKey.FRAME_NUMBER)

    # ------------------------------------------------------------------
    # Node
    # ------------------------------------------------------------------

    def set_node_name(self, name: str):
        self._check("set_node_name")
        self.node_name = name

    def set_node_status(self, status: str):
        self._check("set_node_status")
        self.node_status = status

    def resolve_mode(self, descriptor: ModeDescriptor) -> Any:
        self._check("resolve_mode")
        if descriptor.version > MAX_MODE_VERSION:
            raise UnsupportedModeError(f"mode version {descriptor.version} not supported")
        for mode in Mode:
            if mode.descriptor == descriptor:
                handle = f"{mode.label}/v{descriptor.version}"
                self._mode_labels[handle] = mode.label
                return handle
        raise UnsupportedModeError(f"unknown mode {descriptor}")

    def set_supported_modes(self, modes: list[SupportedMode]):
        self._check("set_supported_modes")
        self.supported_modes = list(modes)

    def start_listening(self):
        self._check("start_listening")
        self.listening = True

    def connect_to_default_viewer(self) -> int:
        """Open a connection from the simulated viewer; returns the handle."""
        self._check("connect_to_default_viewer")
        if not self.listening:
            raise TransportError("connect_to_default_viewer", "node is not listening")
        handle = next(self._handles)
        supported = []
        for entry in self.supported_modes:
            label = self._mode_labels.get(entry.handle)
            unavailable = label in self.cfg.unavailable_modes
            supported.append(SupportedMode(
                entry.handle,
                ModeAvailability.NOT_AVAILABLE if unavailable else ModeAvailability.AVAILABLE,
            ))
        self.sessions[handle] = RemoteSession(handle=handle, supported=supported)
        logger.debug("Viewer connected as session %d", handle)
        return handle

    def shut_down(self):
        self.sessions.clear()
        self.listening = False
        self.shut = True

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _session(self, handle: Any, op: str) -> RemoteSession:
        try:
            return self.sessions[handle]
        except KeyError:
            raise TransportError(op, f"unknown session {handle!r}") from None

    def update_session_list(self) -> list[int]:
        self._check("update_session_list")
        for remote in self.sessions.values():
            self._step(remote)
        return list(self.sessions)

    def update_session(self, handle: Any):
        self._check("update_session")
        self._session(handle, "update_session")

    def get_state(self, handle: Any) -> SessionState:
        self._check("get_state")
        return self._session(handle, "get_state").state

    def accept(self, handle: Any):
        self._check("accept")
        remote = self._session(handle, "accept")
        if remote.state is not SessionState.AWAITING_ACCEPTANCE:
            raise TransportError("accept", f"session in {remote.state.name}")
        remote.accepted = True

    def close(self, handle: Any, action: CloseAction, reason: CloseReason, message: str):
        self._check("close")
        remote = self._session(handle, "close")
        remote.state = SessionState.CLOSED
        remote.closed_with = (action, reason, message)
        if action is CloseAction.EXIT_APPLICATION:
            self.exit_requested = True

    def destroy(self, handle: Any):
        self._check("destroy")
        self._session(handle, "destroy")
        del self.sessions[handle]

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def get_mode(self, handle: Any) -> Any:
        self._check("get_mode")
        return self._session(handle, "get_mode").mode

    def set_mode(self, handle: Any, mode_handle: Any):
        self._check("set_mode")
        remote = self._session(handle, "set_mode")
        if not any(e.handle == mode_handle and e.available for e in remote.supported):
            raise TransportError("set_mode", f"mode {mode_handle!r} not available")
        self._apply_mode(remote, mode_handle)

    def _apply_mode(self, remote: RemoteSession, mode_handle: Any):
        had_mode = remote.mode is not None
        remote.mode = mode_handle
        remote.phase = SetupPhase.INITIALIZATION
        remote.awaiting = False
        remote.incoming.clear()
        remote.in_flight = 0
        remote.state = SessionState.SWITCHING_MODES if had_mode else SessionState.MODE_SETUP

    def get_supported_modes(self, handle: Any) -> list[SupportedMode]:
        self._check("get_supported_modes")
        return list(self._session(handle, "get_supported_modes").supported)

    def get_setup_phase(self, handle: Any) -> tuple[SetupPhase, bool]:
        self._check("get_setup_phase")
        remote = self._session(handle, "get_setup_phase")
        return remote.phase, remote.awaiting

    def complete_setup_phase(self, handle: Any, phase: SetupPhase):
        self._check("complete_setup_phase")
        remote = self._session(handle, "complete_setup_phase")
        if remote.state is not SessionState.MODE_SETUP or phase is not remote.phase:
            raise TransportError("complete_setup_phase", f"not in {phase.name} phase")
        remote.awaiting = True
        remote.remote_wait = self.cfg.remote_delay_ticks

    def pause_mode(self, handle: Any):
        self._check("pause_mode")
        remote = self._session(handle, "pause_mode")
        if remote.state is SessionState.MODE_ACTIVE:
            remote.state = SessionState.MODE_PAUSED

    def resume_mode(self, handle: Any):
        self._check("resume_mode")
        remote = self._session(handle, "resume_mode")
        if remote.state is SessionState.MODE_PAUSED:
            remote.state = SessionState.MODE_RESUMING

    def supports_capability(self, handle: Any, capability: Capability) -> bool:
        self._check("supports_capability")
        self._session(handle, "supports_capability")
        return capability is Capability.VIDEO_RECORDING and self.cfg.recording

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def begin_settings_batch(self, handle: Any):
        self._check("begin_settings_batch")
        remote = self._session(handle, "begin_settings_batch")
        if remote.staged is not None:
            raise TransportError("begin_settings_batch", "batch already open")
        remote.staged = {}

    def end_settings_batch(self, handle: Any):
        self._check("end_settings_batch")
        remote = self._session(handle, "end_settings_batch")
        if remote.staged is None:
            raise TransportError("end_settings_batch", "no batch open")
        staged, remote.staged = remote.staged, None
        self._commit(remote, staged)

    def cancel_settings_batch(self, handle: Any):
        self._check("cancel_settings_batch")
        self._session(handle, "cancel_settings_batch").staged = None

    def get_setting(self, handle: Any, key: SettingKey) -> int | float:
        self._check("get_setting")
        return self._session(handle, "get_setting").settings[key]

    def set_setting(self, handle: Any, key: SettingKey, value: int | float):
        self._check("set_setting")
        remote = self._session(handle, "set_setting")
        value = coerce_value(key, value)
        if remote.staged is not None:
            remote.staged[key] = value
        else:
            self._commit(remote, {key: value})

    def _commit(self, remote: RemoteSession, values: dict):
        remote.settings.update(values)
        self.commits.append(dict(values))
        if (remote.state is SessionState.MODE_ACTIVE
                and self._mode_label(remote) == Mode.STANDARD.label
                and any(k in values for k in _SIZE_KEYS)):
            remote.resize_pending = True

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def next_frame_to_send(self, handle: Any) -> Frame | None:
        self._check("next_frame_to_send")
        remote = self._session(handle, "next_frame_to_send")
        if remote.state is not SessionState.MODE_ACTIVE:
            raise TransportError("next_frame_to_send", f"session in {remote.state.name}")
        if remote.held_out is not None:
            raise TransportError("next_frame_to_send", "previous frame not sent")
        if remote.in_flight >= self.send_slots:
            return None
        width = remote.settings[SettingKey.IMAGE_WIDTH]
        height = remote.settings[SettingKey.IMAGE_HEIGHT]
        buffers = {FrameBufferKey.IMAGE_COLOR_0: np.zeros((height, width, 4), dtype=np.uint8)}
        remote.held_out = Frame((handle, next(self._frame_ids)), buffers)
        return remote.held_out

    def send_frame(self, frame: Frame):
        self._check("send_frame")
        remote = self._session(frame.handle[0], "send_frame")
        if remote.held_out is not frame:
            raise TransportError("send_frame", "frame was not handed out by this session")
        remote.held_out = None
        remote.in_flight += 1
        self.sent_frames.append(frame)

    def receive_frame(self, handle: Any) -> Frame | None:
        self._check("receive_frame")
        remote = self._session(handle, "receive_frame")
        if remote.held_in is not None:
            raise TransportError("receive_frame", "previous frame not released")
        if not remote.incoming:
            return None
        remote.held_in = remote.incoming.popleft()
        return remote.held_in

    def release_frame(self, frame: Frame):
        self._check("release_frame")
        remote = self._session(frame.handle[0], "release_frame")
        if remote.held_in is not frame:
            raise TransportError("release_frame", "frame is not held")
        remote.held_in = None

    # ------------------------------------------------------------------
    # Video recording
    # ------------------------------------------------------------------

    def _recording_op(self, handle: Any, op: str, allowed: tuple, new: RecordingState):
        self._check(op)
        remote = self._session(handle, op)
        if remote.recording not in allowed:
            raise TransportError(op, f"recording is {remote.recording.name}")
        remote.recording = new
        return remote

    def get_recording_state(self, handle: Any) -> RecordingState:
        self._check("get_recording_state")
        return self._session(handle, "get_recording_state").recording

    def get_recording_error(self, handle: Any) -> int:
        self._check("get_recording_error")
        return self._session(handle, "get_recording_error").recording_error

    def clear_recording_error(self, handle: Any):
        remote = self._recording_op(handle, "clear_recording_error",
                                    (RecordingState.ERROR,), RecordingState.NOT_RECORDING)
        remote.recording_error = 0

    def start_recording(self, handle: Any):
        self._recording_op(handle, "start_recording",
                           (RecordingState.NOT_RECORDING,), RecordingState.RECORDING)

    def pause_recording(self, handle: Any):
        self._recording_op(handle, "pause_recording",
                           (RecordingState.RECORDING,), RecordingState.PAUSED)

    def resume_recording(self, handle: Any):
        self._recording_op(handle, "resume_recording",
                           (RecordingState.PAUSED,), RecordingState.RECORDING)

    def finish_recording(self, handle: Any):
        self._recording_op(handle, "finish_recording",
                           (RecordingState.RECORDING, RecordingState.PAUSED),
                           RecordingState.FINISHED)

    def save_recording(self, handle: Any, path: str):
        remote = self._recording_op(handle, "save_recording",
                                    (RecordingState.FINISHED,), RecordingState.NOT_RECORDING)
        remote.saved_paths.append(path)

    def discard_recording(self, handle: Any):
        self._recording_op(handle, "discard_recording",
                           (RecordingState.FINISHED,), RecordingState.NOT_RECORDING)

    # ------------------------------------------------------------------
    # Simulated viewer
    # ------------------------------------------------------------------

    def _mode_label(self, remote: RemoteSession) -> str | None:
        return self._mode_labels.get(remote.mode)

    def _step(self, remote: RemoteSession):
        state = remote.state
        if state is SessionState.INITIALIZING:
            remote.state = SessionState.AWAITING_ACCEPTANCE
        elif state is SessionState.AWAITING_ACCEPTANCE:
            if remote.accepted:
                remote.state = SessionState.NO_MODE
                if self.cfg.recording:
                    remote.recording = RecordingState.NOT_RECORDING
        elif state is SessionState.NO_MODE:
            self._auto_select_mode(remote)
        elif state is SessionState.SWITCHING_MODES:
            remote.state = SessionState.MODE_SETUP
        elif state is SessionState.MODE_SETUP:
            self._step_setup(remote)
        elif state is SessionState.MODE_RESUMING:
            remote.state = SessionState.MODE_ACTIVE
        elif state is SessionState.PROCESSING_MODE_SETTINGS_CHANGE:
            remote.state = SessionState.MODE_SETUP
            remote.phase = SetupPhase.COMPLETION
            remote.awaiting = False
        elif state is SessionState.MODE_ACTIVE:
            self._step_active(remote)

    def _auto_select_mode(self, remote: RemoteSession):
        if remote.mode is not None or not self.cfg.auto_mode:
            return
        for entry in remote.supported:
            if entry.available and self._mode_labels.get(entry.handle) == self.cfg.auto_mode:
                self._apply_mode(remote, entry.handle)
                return

    def _step_setup(self, remote: RemoteSession):
        if not remote.awaiting:
            return
        if remote.remote_wait > 0:
            remote.remote_wait -= 1
            return
        if remote.phase is SetupPhase.INITIALIZATION:
            if self._mode_label(remote) == Mode.AUGMENTED_REALITY.label:
                remote.settings[SettingKey.IMAGE_WIDTH] = self.cfg.ar_image_width
                remote.settings[SettingKey.IMAGE_HEIGHT] = self.cfg.ar_image_height
            remote.phase = SetupPhase.COMPLETION
            remote.awaiting = False
        else:
            remote.state = SessionState.MODE_ACTIVE
            remote.awaiting = False
            remote.resize_pending = False

    def _step_active(self, remote: RemoteSession):
        # the viewer consumes everything sent since the last step
        remote.in_flight = 0
        if remote.resize_pending:
            remote.resize_pending = False
            remote.state = SessionState.PROCESSING_MODE_SETTINGS_CHANGE
            return
        if self.cfg.camera_frames and self._mode_label(remote) == Mode.AUGMENTED_REALITY.label:
            self.push_camera_frame(remote.handle)

    def _camera_data(self, remote: RemoteSession) -> dict:
        """Webcam above the display looking down at it, drifting sideways."""
        width = remote.settings[SettingKey.IMAGE_WIDTH] or self.cfg.ar_image_width
        height = remote.settings[SettingKey.IMAGE_HEIGHT] or self.cfg.ar_image_height
        sway = 0.1 * math.sin(remote.camera_tag * 0.05)
        pose = np.linalg.inv(look_at((sway, 0.25, 0.45), (0.0, 0.0, -0.05), (0.0, 1.0, 0.0)))
        return {
            FrameDataKey.FRAME_NUMBER: remote.camera_tag,
            FrameDataKey.CAMERA_POSE: pose,
            FrameDataKey.CAMERA_FOCAL_LENGTH: 0.94 * width,
            FrameDataKey.CAMERA_PRINCIPAL_POINT_OFFSET_X: width / 2.0,
            FrameDataKey.CAMERA_PRINCIPAL_POINT_OFFSET_Y: height / 2.0,
            FrameDataKey.CAMERA_PIXEL_ASPECT_RATIO: 1.0,
            FrameDataKey.CAMERA_AXIS_SKEW: 0.0,
        }
