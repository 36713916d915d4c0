"""Session transport interface consumed by the presenter engine.

The engine never talks to a socket directly: everything it needs from the
connection layer is expressed by :class:`SessionTransport`.  Session
handles are opaque; frames are borrowed for a single tick.  Every method
may raise :class:`~viewlink.errors.TransportError`.

:mod:`viewlink.loopback` provides an in-process implementation with a
simulated viewer on the other end.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Any

import numpy as np

from .errors import TransportError
from .modes import ModeDescriptor, SupportedMode
from .settings import SettingKey

U64_MAX = 0xFFFFFFFFFFFFFFFF


class SessionState(Enum):
    INITIALIZING = auto()
    AWAITING_ACCEPTANCE = auto()
    SWITCHING_MODES = auto()
    NO_MODE = auto()
    MODE_SETUP = auto()
    MODE_ACTIVE = auto()
    MODE_PAUSED = auto()
    MODE_RESUMING = auto()
    PROCESSING_MODE_SETTINGS_CHANGE = auto()
    CLOSED = auto()
    ERROR = auto()

    @property
    def terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.ERROR)


class SetupPhase(Enum):
    INITIALIZATION = auto()
    COMPLETION = auto()


class CloseAction(Enum):
    NONE = auto()
    EXIT_APPLICATION = auto()


class CloseReason(Enum):
    UNKNOWN = auto()
    USER_REQUESTED = auto()
    CONNECTION_REJECTED = auto()
    ERROR = auto()


class Capability(Enum):
    VIDEO_RECORDING = auto()


class RecordingState(Enum):
    NOT_AVAILABLE = auto()
    NOT_RECORDING = auto()
    RECORDING = auto()
    PAUSED = auto()
    FINISHED = auto()
    ERROR = auto()


class RecordingQuality(Enum):
    Q480P = 0
    Q720P = 1
    Q1080P = 2

    @property
    def label(self) -> str:
        return self.name[1:].lower()


class FrameDataKey(Enum):
    FRAME_NUMBER = auto()
    CAMERA_POSE = auto()
    CAMERA_FOCAL_LENGTH = auto()
    CAMERA_PRINCIPAL_POINT_OFFSET_X = auto()
    CAMERA_PRINCIPAL_POINT_OFFSET_Y = auto()
    CAMERA_PIXEL_ASPECT_RATIO = auto()
    CAMERA_AXIS_SKEW = auto()


class FrameBufferKey(Enum):
    IMAGE_COLOR_0 = auto()


class Frame:
    """One tick's worth of image data plus small typed metadata."""

    def __init__(self, handle: Any, buffers: dict[FrameBufferKey, np.ndarray] | None = None):
        self.handle = handle
        self._data: dict[FrameDataKey, Any] = {}
        self._buffers = buffers or {}

    def set_data(self, key: FrameDataKey, value: Any):
        if key is FrameDataKey.FRAME_NUMBER:
            if isinstance(value, bool) or int(value) != value or not 0 <= int(value) <= U64_MAX:
                raise ValueError(f"frame number must be an unsigned 64-bit int, got {value!r}")
            value = int(value)
        elif key is FrameDataKey.CAMERA_POSE:
            value = np.asarray(value, dtype=np.float64)
            if value.shape != (4, 4):
                raise ValueError(f"camera pose must be 4x4, got {value.shape}")
        else:
            value = float(value)
        self._data[key] = value

    def get_data(self, key: FrameDataKey) -> Any:
        try:
            return self._data[key]
        except KeyError:
            raise TransportError("get_frame_data", f"frame has no {key.name}") from None

    def has_data(self, key: FrameDataKey) -> bool:
        return key in self._data

    def buffer(self, key: FrameBufferKey) -> np.ndarray:
        try:
            return self._buffers[key]
        except KeyError:
            raise TransportError("get_frame_buffer", f"frame has no {key.name}") from None


class SessionTransport(ABC):
    """Operations the engine needs from the connection layer."""

    # -- node ---------------------------------------------------------------

    @abstractmethod
    def set_node_name(self, name: str): ...

    @abstractmethod
    def set_node_status(self, status: str): ...

    @abstractmethod
    def resolve_mode(self, descriptor: ModeDescriptor) -> Any:
        """Return an opaque handle or raise ``UnsupportedModeError``."""

    @abstractmethod
    def set_supported_modes(self, modes: list[SupportedMode]): ...

    @abstractmethod
    def start_listening(self): ...

    @abstractmethod
    def connect_to_default_viewer(self): ...

    @abstractmethod
    def shut_down(self): ...

    # -- session list / state ----------------------------------------------

    @abstractmethod
    def update_session_list(self) -> list[Any]: ...

    @abstractmethod
    def update_session(self, handle: Any): ...

    @abstractmethod
    def get_state(self, handle: Any) -> SessionState: ...

    @abstractmethod
    def accept(self, handle: Any): ...

    @abstractmethod
    def close(self, handle: Any, action: CloseAction, reason: CloseReason, message: str): ...

    @abstractmethod
    def destroy(self, handle: Any): ...

    # -- modes ----------------------------------------------------------------

    @abstractmethod
    def get_mode(self, handle: Any) -> Any: ...

    @abstractmethod
    def set_mode(self, handle: Any, mode_handle: Any): ...

    @abstractmethod
    def get_supported_modes(self, handle: Any) -> list[SupportedMode]: ...

    @abstractmethod
    def get_setup_phase(self, handle: Any) -> tuple[SetupPhase, bool]:
        """Return ``(phase, awaiting_completion)``."""

    @abstractmethod
    def complete_setup_phase(self, handle: Any, phase: SetupPhase): ...

    @abstractmethod
    def pause_mode(self, handle: Any): ...

    @abstractmethod
    def resume_mode(self, handle: Any): ...

    @abstractmethod
    def supports_capability(self, handle: Any, capability: Capability) -> bool: ...

    # -- settings -------------------------------------------------------------

    @abstractmethod
    def begin_settings_batch(self, handle: Any): ...

    @abstractmethod
    def end_settings_batch(self, handle: Any): ...

    @abstractmethod
    def cancel_settings_batch(self, handle: Any):
        """Drop an open batch without applying any of it."""

    @abstractmethod
    def get_setting(self, handle: Any, key: SettingKey) -> int | float: ...

    @abstractmethod
    def set_setting(self, handle: Any, key: SettingKey, value: int | float): ...

    # -- frames ---------------------------------------------------------------

    @abstractmethod
    def next_frame_to_send(self, handle: Any) -> Frame | None:
        """Return a free outgoing frame, or ``None`` when the viewer is behind."""

    @abstractmethod
    def send_frame(self, frame: Frame): ...

    @abstractmethod
    def receive_frame(self, handle: Any) -> Frame | None:
        """Return the next incoming frame, or ``None`` if none has arrived."""

    @abstractmethod
    def release_frame(self, frame: Frame): ...

    # -- video recording ------------------------------------------------------

    @abstractmethod
    def get_recording_state(self, handle: Any) -> RecordingState: ...

    @abstractmethod
    def get_recording_error(self, handle: Any) -> int: ...

    @abstractmethod
    def clear_recording_error(self, handle: Any): ...

    @abstractmethod
    def start_recording(self, handle: Any): ...

    @abstractmethod
    def pause_recording(self, handle: Any): ...

    @abstractmethod
    def resume_recording(self, handle: Any): ...

    @abstractmethod
    def finish_recording(self, handle: Any): ...

    @abstractmethod
    def save_recording(self, handle: Any, path: str): ...

    @abstractmethod
    def discard_recording(self, handle: Any): ...
