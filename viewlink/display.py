"""Pygame window showing the presenter's local view of the scene.

The window is the *viewport* the engine reasons about: its size drives
the Standard mode image size and its desktop position places the AR
mask on the physical display.  Moves and resizes are tracked from SDL
window events.

The display **must** run on the main thread (platform requirement for
Pygame / SDL).
"""

from __future__ import annotations

import logging
import os

import cv2
import numpy as np
import pygame

from .config import DisplayCfg
from .geometry import Viewport

logger = logging.getLogger(__name__)


class PresenterDisplay:
    """Resizable (or borderless full-screen) Pygame window."""

    def __init__(self, cfg: DisplayCfg):
        self.cfg = cfg
        self.x = cfg.x
        self.y = cfg.y
        self.width = cfg.width
        self.height = cfg.height
        self.screen: pygame.Surface | None = None
        self.clock: pygame.time.Clock | None = None
        self._rgb_buf: np.ndarray | None = None

    @property
    def viewport(self) -> Viewport:
        return Viewport(self.x, self.y, self.width, self.height)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self):
        # SDL env vars must be set BEFORE pygame.display.set_mode()
        os.environ["SDL_VIDEO_WINDOW_POS"] = f"{self.x},{self.y}"
        pygame.init()
        if self.cfg.fullscreen:
            flags = pygame.NOFRAME | pygame.DOUBLEBUF
            sizes = pygame.display.get_desktop_sizes()
            if sizes:
                self.width, self.height = sizes[0]
        else:
            flags = pygame.RESIZABLE
        self.screen = pygame.display.set_mode((self.width, self.height), flags)
        pygame.display.set_caption("Viewlink Presenter")
        self.clock = pygame.time.Clock()
        self._rgb_buf = np.empty((self.height, self.width, 3), dtype=np.uint8)
        logger.info("Window opened: %dx%d at (%d,%d)  fullscreen=%s",
                    self.width, self.height, self.x, self.y, self.cfg.fullscreen)

    def close(self):
        os.environ.pop("SDL_VIDEO_WINDOW_POS", None)
        pygame.quit()

    # ------------------------------------------------------------------
    # Window events
    # ------------------------------------------------------------------

    def handle_event(self, event: pygame.event.Event):
        if event.type == pygame.VIDEORESIZE:
            self.width, self.height = max(event.w, 1), max(event.h, 1)
            self._rgb_buf = np.empty((self.height, self.width, 3), dtype=np.uint8)
            logger.info("Window resized to %dx%d", self.width, self.height)
        elif event.type == pygame.WINDOWMOVED:
            self.x, self.y = event.x, event.y

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def show(self, frame_rgba: np.ndarray):
        """Display an RGBA numpy frame (top row first)."""
        if self.screen is None:
            return
        fh, fw = frame_rgba.shape[:2]
        if fw != self.width or fh != self.height:
            frame_rgba = cv2.resize(frame_rgba, (self.width, self.height))
        cv2.cvtColor(frame_rgba, cv2.COLOR_RGBA2RGB, dst=self._rgb_buf)
        surf = pygame.image.frombuffer(
            bytes(self._rgb_buf.data), (self.width, self.height), "RGB"
        )
        self.screen.blit(surf, (0, 0))
        pygame.display.flip()

    def tick(self) -> float:
        """Limit frame-rate and return the measured delta-time in seconds."""
        dt = self.clock.tick(self.cfg.fps) if self.clock else 16
        return dt / 1000.0
