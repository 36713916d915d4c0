"""Tracking subsystem: display geometry, head and stylus poses.

The engine only needs a handful of queries from the tracker, captured by
:class:`TrackingProvider`.  :class:`SimulatedTracking` stands in for real
hardware: a single 24" display, a head hovering in front of it and a
stylus sweeping slowly over the screen.

Poses are 4×4 float64 matrices.  "Display space" is centred on the
physical screen (metres, Y up, Z towards the user); "camera space" is the
tracker's world-anchored space, related to display space by
:meth:`TrackingProvider.display_to_camera`.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from .geometry import DisplayInfo, Viewport, center_eye_matrices, look_at


@dataclass
class ViewContext:
    """Centre-eye view and projection for one viewport."""
    view: np.ndarray
    projection: np.ndarray
    viewport: Viewport


class TrackingProvider(ABC):

    @abstractmethod
    def display_at(self, x: int, y: int) -> DisplayInfo:
        """Display containing desktop point ``(x, y)`` (primary display otherwise)."""

    @abstractmethod
    def display_to_camera(self) -> np.ndarray: ...

    @abstractmethod
    def eye_position(self) -> np.ndarray:
        """Centre-eye position in display space, shape ``(3,)``."""

    @abstractmethod
    def stylus_pose(self) -> np.ndarray:
        """Stylus pose in camera space; the tip points down local -Z."""

    def update(self, dt: float):
        """Advance the tracker by *dt* seconds (no-op for static trackers)."""

    def center_eye(self, viewport: Viewport, near: float = 0.1, far: float = 100.0) -> ViewContext:
        display = self.display_at(viewport.x, viewport.y)
        view_display, projection = center_eye_matrices(
            viewport, display, self.eye_position(), near, far)
        # frustum matrices are built in display space; the scene works in camera space
        view = view_display @ np.linalg.inv(self.display_to_camera())
        return ViewContext(view=view, projection=projection, viewport=viewport)


class SimulatedTracking(TrackingProvider):
    """Deterministic tracker used for the loopback presenter and tests."""

    def __init__(
        self,
        display: DisplayInfo | None = None,
        eye: tuple[float, float, float] = (0.0, 0.1, 0.4),
        stylus_radius: float = 0.05,
        stylus_period: float = 8.0,
    ):
        self.display = display or DisplayInfo(
            position=(0, 0), native_resolution=(1920, 1080), size_m=(0.521, 0.293))
        self._eye = np.asarray(eye, dtype=np.float64)
        self._display_to_camera = np.eye(4)
        self.stylus_radius = stylus_radius
        self.stylus_period = stylus_period
        self.t = 0.0

    def display_at(self, x: int, y: int) -> DisplayInfo:
        return self.display

    def display_to_camera(self) -> np.ndarray:
        return self._display_to_camera

    def eye_position(self) -> np.ndarray:
        return self._eye

    def stylus_pose(self) -> np.ndarray:
        phase = 2.0 * math.pi * self.t / self.stylus_period
        tip = np.array([self.stylus_radius * math.cos(phase),
                        0.02,
                        0.08 + self.stylus_radius * math.sin(phase)])
        target = np.array([0.0, 0.0, -0.05])
        # look_at gives a view transform; its inverse is the stylus pose
        return np.linalg.inv(look_at(tip, target, (0.0, 1.0, 0.0)))

    def update(self, dt: float):
        self.t += dt
