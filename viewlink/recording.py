"""Video-recording sub-state of a session.

The viewer owns the actual recording; the presenter only polls its state
every tick (:class:`RecordingMonitor`) and issues discrete user commands
(:class:`RecordingController`).  Commands are silently ignored unless the
recording is in a state where they make sense.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from .config import RecordingCfg
from .settings import SettingKey, SettingsStore
from .transport import Capability, RecordingQuality, RecordingState

if TYPE_CHECKING:
    from .transport import SessionTransport

logger = logging.getLogger(__name__)

_NEXT_QUALITY = {
    RecordingQuality.Q480P: RecordingQuality.Q720P,
    RecordingQuality.Q720P: RecordingQuality.Q1080P,
    RecordingQuality.Q1080P: RecordingQuality.Q480P,
}


class RecordingMonitor:
    """Per-session poller: edge-triggered logging and error draining."""

    def __init__(self, transport: SessionTransport, handle: Any):
        self.transport = transport
        self.handle = handle
        self.state = RecordingState.NOT_AVAILABLE
        self.last_state: RecordingState | None = None
        self.last_error: int | None = None

    def poll(self) -> RecordingState:
        state = self.transport.get_recording_state(self.handle)
        self.state = state
        if state is not self.last_state:
            prev = self.last_state.name if self.last_state else "NONE"
            logger.info("Video recording state: %s => %s", prev, state.name)
            self.last_state = state
        if state is RecordingState.ERROR:
            code = self.transport.get_recording_error(self.handle)
            self.last_error = code
            logger.error("Video recording error code: %d", code)
            self.transport.clear_recording_error(self.handle)
        return state


class RecordingController:
    """User commands against the active session's recording."""

    def __init__(self, transport: SessionTransport, cfg: RecordingCfg):
        self.transport = transport
        self.cfg = cfg

    def save_path(self) -> str:
        return os.path.abspath(os.path.join(self.cfg.save_dir or os.getcwd(), self.cfg.save_name))

    def cycle_quality(self, handle: Any, settings: SettingsStore) -> RecordingQuality | None:
        if self.transport.get_recording_state(handle) is not RecordingState.NOT_RECORDING:
            return None
        if not self.transport.supports_capability(handle, Capability.VIDEO_RECORDING):
            return None
        raw = settings.get(SettingKey.VIDEO_RECORDING_QUALITY)
        try:
            current = RecordingQuality(raw)
        except ValueError:
            logger.warning("Unknown video recording quality %r, leaving it unchanged", raw)
            return None
        new = _NEXT_QUALITY[current]
        settings.set(SettingKey.VIDEO_RECORDING_QUALITY, new.value)
        logger.info("Video recording quality: %s => %s", current.label, new.label)
        return new

    def start(self, handle: Any) -> bool:
        if self.transport.get_recording_state(handle) is not RecordingState.NOT_RECORDING:
            return False
        self.transport.start_recording(handle)
        logger.info("Started video recording")
        return True

    def pause_resume(self, handle: Any) -> bool:
        state = self.transport.get_recording_state(handle)
        if state is RecordingState.RECORDING:
            self.transport.pause_recording(handle)
            logger.info("Paused video recording")
            return True
        if state is RecordingState.PAUSED:
            self.transport.resume_recording(handle)
            logger.info("Resumed video recording")
            return True
        return False

    def finish(self, handle: Any) -> bool:
        state = self.transport.get_recording_state(handle)
        if state not in (RecordingState.RECORDING, RecordingState.PAUSED):
            return False
        self.transport.finish_recording(handle)
        logger.info("Finished video recording")
        return True

    def save(self, handle: Any) -> str | None:
        if self.transport.get_recording_state(handle) is not RecordingState.FINISHED:
            return None
        path = self.save_path()
        self.transport.save_recording(handle, path)
        logger.info("Saving video recording to %s", path)
        return path

    def discard(self, handle: Any) -> bool:
        if self.transport.get_recording_state(handle) is not RecordingState.FINISHED:
            return False
        self.transport.discard_recording(handle)
        logger.info("Discarded video recording")
        return True
