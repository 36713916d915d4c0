"""Presenter engine – owns :class:`EngineState` and runs one tick at a time.

A tick is::

    tracking + scene camera update
    queued user commands
    session state machine (every session)
    frame pump (active session only)

The engine never blocks and never owns a thread; the caller decides how
often to tick.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .commands import Command, CommandRouter
from .config import ViewlinkCfg
from .errors import EngineError, TransportError
from .frame_pump import FramePump, PumpResult
from .geometry import Viewport
from .modes import ModeCatalog
from .negotiator import ModeNegotiator
from .recording import RecordingController
from .renderer import SceneRenderer
from .session import EngineState, SessionMachine
from .settings import SettingKey, increment_clamped
from .tracking import SimulatedTracking, TrackingProvider
from .transport import CloseAction, CloseReason, SessionState, SessionTransport

logger = logging.getLogger(__name__)

EXIT_VIEWER_MESSAGE = "User requested connection to close and viewer to exit"

_OFFSET_KEYS = (SettingKey.OVERLAY_OFFSET_X, SettingKey.OVERLAY_OFFSET_Y)


class PresenterEngine:

    def __init__(
        self,
        cfg: ViewlinkCfg,
        transport: SessionTransport,
        tracking: TrackingProvider | None = None,
        renderer: SceneRenderer | None = None,
        viewport: Viewport | None = None,
    ):
        self.cfg = cfg
        self.transport = transport
        self.tracking = tracking or SimulatedTracking()
        self.renderer = renderer or SceneRenderer(cfg.scene, cfg.ar)
        d = cfg.display
        self.state = EngineState(
            cfg=cfg,
            transport=transport,
            catalog=ModeCatalog(),
            viewport=viewport or Viewport(d.x, d.y, d.width, d.height),
            draw_mask=cfg.ar.draw_mask,
            draw_background=cfg.ar.draw_background,
            status=cfg.node.status_not_connected,
        )
        self.negotiator = ModeNegotiator(self.state, self.tracking)
        self.machine = SessionMachine(self.state, self.negotiator)
        self.frame_pump = FramePump(self.state, self.tracking, self.renderer)
        self.recorder = RecordingController(transport, cfg.recording)
        self.router = CommandRouter(self.state, self)
        self.quit_requested = False
        self.ticks = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Register the node, its modes and start accepting viewers."""
        t = self.transport
        try:
            t.set_node_name(self.cfg.node.name)
            t.set_node_status(self.state.status)
            t.set_supported_modes(self.state.catalog.resolve(t))
            t.start_listening()
        except TransportError as exc:
            raise EngineError(f"presenter start-up failed: {exc}") from exc
        logger.info("Presenter %r listening (modes: %s)", self.cfg.node.name,
                    ", ".join(m.label for m in self.state.catalog.supported))
        if self.cfg.engine.auto_connect:
            self.connect()

    def shut_down(self):
        self.state.resources.tear_down_all()
        self.transport.shut_down()
        logger.info("Presenter shut down")

    def set_viewport(self, viewport: Viewport):
        if viewport != self.state.viewport:
            logger.debug("Viewport %s", viewport)
            self.state.viewport = viewport

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, dt: float = 0.0, commands: Iterable[Command] = ()) -> PumpResult:
        self.advance(dt)
        for command in commands:
            self.dispatch(command)
        self.update()
        result = self.pump()
        self.ticks += 1
        return result

    def advance(self, dt: float):
        """Move the tracker and the orbiting scene camera forward by *dt* seconds."""
        self.tracking.update(dt)
        self.renderer.update(dt, self.tracking.stylus_pose())

    def update(self):
        self.machine.update()

    def pump(self) -> PumpResult:
        session = self.state.active
        try:
            result = self.frame_pump.pump()
        except TransportError as exc:
            session.pump_failed = True
            self.machine.record_failure(session, exc)
            return PumpResult.IDLE
        if session is not None:
            session.pump_failed = False
        return result

    def dispatch(self, command: Command) -> bool:
        try:
            return self.router.dispatch(command)
        except TransportError as exc:
            if self.state.active is None:
                logger.warning("%s failed: %s", command.value, exc)
            else:
                self.machine.record_failure(self.state.active, exc)
            return False

    # ------------------------------------------------------------------
    # Command handlers (called through commands.ROUTES)
    # ------------------------------------------------------------------

    def quit(self):
        self.quit_requested = True

    def toggle_orbit(self):
        logger.info("Camera orbit %s", "ON" if self.renderer.toggle_orbit() else "OFF")

    def connect(self):
        logger.info("Connecting to default viewer")
        self.transport.connect_to_default_viewer()

    def close_and_exit_viewer(self):
        self.transport.close(self.state.active_handle, CloseAction.EXIT_APPLICATION,
                             CloseReason.USER_REQUESTED, EXIT_VIEWER_MESSAGE)
        logger.info("Closing session %r and exiting viewer", self.state.active_handle)

    def switch_mode(self):
        """Ask the viewer for the next available supported mode (wrapping)."""
        st = self.state
        handle = st.active_handle
        supported = self.transport.get_supported_modes(handle)
        for _ in range(len(supported)):
            st.mode_index = (st.mode_index + 1) % len(supported)
            entry = supported[st.mode_index]
            if entry.available:
                self.transport.set_mode(handle, entry.handle)
                mode = st.catalog.mode_for(entry.handle)
                logger.info("Switching to %s mode", mode.label if mode else entry.handle)
                return
        logger.warning("No available mode to switch to")

    def pause_resume_mode(self):
        session = self.state.active
        if session.state is SessionState.MODE_ACTIVE:
            self.transport.pause_mode(session.handle)
            logger.info("Pausing mode")
        elif session.state is SessionState.MODE_PAUSED:
            self.transport.resume_mode(session.handle)
            logger.info("Resuming mode")

    def toggle_mask(self):
        self.state.draw_mask = not self.state.draw_mask
        logger.info("Mask visualisation %s", "ON" if self.state.draw_mask else "OFF")

    def toggle_background(self):
        self.state.draw_background = not self.state.draw_background
        logger.info("AR background %s", "ON" if self.state.draw_background else "OFF")

    def adjust_overlay(self, key: SettingKey, direction: float):
        ar = self.cfg.ar
        settings = self.state.active.settings
        if key in _OFFSET_KEYS:
            bound = float(settings.get(SettingKey.IMAGE_WIDTH))
            value = increment_clamped(settings, key, direction * ar.offset_step, -bound, bound)
        else:
            value = increment_clamped(settings, key, direction * ar.scale_step,
                                      ar.scale_min, ar.scale_max)
        logger.info("%s = %.2f", key.label, value)

    def reset_overlay(self, key: SettingKey):
        value = 0.0 if key in _OFFSET_KEYS else 1.0
        self.state.active.settings.set(key, value)
        logger.info("%s reset to %.2f", key.label, value)

    def recording_quality(self):
        session = self.state.active
        self.recorder.cycle_quality(session.handle, session.settings)

    def recording_start(self):
        self.recorder.start(self.state.active_handle)

    def recording_pause_resume(self):
        self.recorder.pause_resume(self.state.active_handle)

    def recording_finish(self):
        self.recorder.finish(self.state.active_handle)

    def recording_save(self):
        self.recorder.save(self.state.active_handle)

    def recording_discard(self):
        self.recorder.discard(self.state.active_handle)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def frame_number(self) -> int | None:
        res = self.state.resources.standard
        return res.frame_number if res is not None else None

    def status(self) -> dict:
        """Plain-dict snapshot for the HUD and the status server."""
        st = self.state
        session = st.active
        return {
            "node": self.cfg.node.name,
            "status": st.status,
            "sessions": len(st.sessions),
            "active": repr(session.handle) if session else None,
            "state": session.state.name if session else None,
            "mode": session.mode.label if session and session.mode else None,
            "recording": session.recording.state.name if session else None,
            "frame_number": self.frame_number(),
            "frames_sent": st.frames_sent,
            "pump": self.frame_pump.last_result.value,
            "draw_mask": st.draw_mask,
            "draw_background": st.draw_background,
            "orbit": self.renderer.orbit,
            "viewport": [st.viewport.x, st.viewport.y, st.viewport.width, st.viewport.height],
            "ticks": self.ticks,
        }
