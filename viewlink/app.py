"""Main application – wires every component together.

Lifecycle
---------
1. Load config.
2. Create the transport (loopback viewer in test mode), tracker and renderer.
3. Start the engine: node name, supported modes, listen.
4. Enter main loop:
   a. Poll input (keyboard + web UI) → commands.
   b. Advance tracking and the scene camera.
   c. Apply commands.
   d. Engine update: every session's state, settings and recording.
   e. Render the local view + HUD.
   f. Frame pump: send the active session's image.
   g. Present locally and push status/frames to the status server.
5. On quit → tear down mode resources and shut the transport down.
"""

from __future__ import annotations

import logging
import time
from collections import deque

import cv2
import numpy as np

from .commands import Command
from .config import ViewlinkCfg
from .display import PresenterDisplay
from .engine import PresenterEngine
from .input_handler import InputHandler
from .loopback import LoopbackTransport
from .renderer import RenderSurface, SceneRenderer
from .status_server import StatusServer
from .tracking import SimulatedTracking
from .transport import SessionTransport

logger = logging.getLogger(__name__)

HUD_COLOR = (255, 255, 255, 255)


def draw_hud(frame: np.ndarray, status: dict, fps: float | None = None) -> np.ndarray:
    """Write the session summary into the top-left corner of *frame*."""
    lines = [
        f"{status.get('node', '')}: {status.get('status', '')}",
        f"state {status.get('state') or '-'}  mode {status.get('mode') or '-'}",
        f"frame {status.get('frame_number')}  sent {status.get('frames_sent', 0)}",
        f"recording {status.get('recording') or '-'}",
    ]
    if fps is not None:
        lines.append(f"{fps:.0f}fps")
    for i, text in enumerate(lines):
        cv2.putText(frame, text, (8, 20 + 18 * i),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.45, HUD_COLOR, 1, cv2.LINE_AA)
    return frame


class PresenterApp:
    """Top-level application object."""

    def __init__(self, cfg: ViewlinkCfg, transport: SessionTransport | None = None,
                 max_ticks: int | None = None):
        self.cfg = cfg
        self.max_ticks = max_ticks
        self.transport = transport or LoopbackTransport(cfg.loopback)
        self.tracking = SimulatedTracking()
        self.renderer = SceneRenderer(cfg.scene, cfg.ar)
        self.engine = PresenterEngine(cfg, self.transport, self.tracking, self.renderer)

        headless = cfg.display.headless
        self.display = None if headless else PresenterDisplay(cfg.display)
        self.input = None if headless else InputHandler(cfg.controls)
        self.stream = StatusServer(cfg.stream) if cfg.stream.enabled else None
        self.local: RenderSurface | None = None

        self._running = False
        self._fps_hist: deque[float] = deque(maxlen=60)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self):
        """Blocking main loop.  Call from the main thread."""
        self.engine.start()
        if self.display:
            self.display.open()
        if self.stream:
            self.stream.start()

        self._running = True
        logger.info("Running.  Press ESC to quit, C to connect, M to switch mode.")
        try:
            self._main_loop()
        except KeyboardInterrupt:
            pass
        finally:
            self._shutdown()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _poll_commands(self) -> list[Command]:
        commands: list[Command] = []
        if self.input:
            commands.extend(self.input.poll(self.display.handle_event))
        if self.stream:
            commands.extend(self.stream.drain_commands())
        return commands

    def _main_loop(self):
        engine = self.engine
        dt = 1.0 / max(self.cfg.display.fps, 1)
        while self._running:
            t0 = time.perf_counter()

            # 1 ─ Input (keyboard + web UI)
            commands = self._poll_commands()
            if self.display:
                engine.set_viewport(self.display.viewport)

            # 2 ─ Commands, then every session against the fresh state
            engine.advance(dt)
            for command in commands:
                engine.dispatch(command)
            if engine.quit_requested:
                break
            engine.update()

            # 3 ─ Local view
            frame = self._render_local()

            # 4 ─ Frame pump
            engine.pump()
            engine.ticks += 1

            # 5 ─ Present
            if self.display:
                self.display.show(frame)
                dt = self.display.tick()
            else:
                elapsed = time.perf_counter() - t0
                time.sleep(max(0.0, 1.0 / max(self.cfg.display.fps, 1) - elapsed))
            if self.stream:
                self.stream.update_frame(engine.state.last_frame)
                self.stream.update_status(engine.status())

            self._fps_hist.append(time.perf_counter() - t0)
            if self.max_ticks is not None and engine.ticks >= self.max_ticks:
                break

    def _render_local(self) -> np.ndarray:
        viewport = self.engine.state.viewport
        if self.local is None or self.local.size != viewport.size:
            self.local = RenderSurface(viewport.width, viewport.height)
        ar = self.cfg.ar
        ctx = self.tracking.center_eye(viewport, ar.near_clip, ar.far_clip)
        self.renderer.draw_standard(self.local, ctx)
        avg = sum(self._fps_hist) / len(self._fps_hist) if self._fps_hist else 0.0
        return draw_hud(self.local.color, self.engine.status(), 1.0 / avg if avg > 0 else None)

    def _shutdown(self):
        logger.info("Shutting down…")
        self.engine.shut_down()
        if self.display:
            self.display.close()
