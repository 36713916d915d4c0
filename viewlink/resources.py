"""Per-mode render resources.

Each mode owns an off-screen surface plus whatever it needs to fill it.
Setup is idempotent: asking for resources that already exist at the same
size keeps them (and their frame counter); a different size tears the old
ones down first.  Tear-down of a mode with nothing allocated is a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .geometry import BACKGROUND_QUAD, MASK_VERTS
from .modes import Mode
from .renderer import RenderSurface
from .tracking import ViewContext

logger = logging.getLogger(__name__)


@dataclass
class StandardModeResources:
    width: int
    height: int
    surface: RenderSurface
    view: ViewContext | None = None
    frame_number: int = 0


@dataclass
class ArModeResources:
    width: int
    height: int
    surface: RenderSurface
    mask_vertices: np.ndarray
    background_quad: np.ndarray


class ModeResources:
    """Holds at most one set of resources per mode."""

    def __init__(self):
        self.standard: StandardModeResources | None = None
        self.ar: ArModeResources | None = None
        self.allocations = 0             # surfaces created so far

    # ------------------------------------------------------------------
    # Standard
    # ------------------------------------------------------------------

    def set_up_standard(self, width: int, height: int) -> StandardModeResources:
        res = self.standard
        if res is not None and (res.width, res.height) == (width, height):
            return res
        if res is not None:
            self.tear_down(Mode.STANDARD)
        self.standard = StandardModeResources(width, height, RenderSurface(width, height))
        self.allocations += 1
        logger.info("Allocated standard mode target %dx%d", width, height)
        return self.standard

    # ------------------------------------------------------------------
    # Augmented reality
    # ------------------------------------------------------------------

    def set_up_ar(self, width: int, height: int) -> ArModeResources:
        res = self.ar
        if res is not None and (res.width, res.height) == (width, height):
            return res
        if res is not None:
            self.tear_down(Mode.AUGMENTED_REALITY)
        self.ar = ArModeResources(
            width=width,
            height=height,
            surface=RenderSurface(width, height),
            mask_vertices=np.zeros((MASK_VERTS, 3), dtype=np.float32),
            background_quad=BACKGROUND_QUAD.copy(),
        )
        self.allocations += 1
        logger.info("Allocated augmented reality mode target %dx%d", width, height)
        return self.ar

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def tear_down(self, mode: Mode | None):
        if mode is Mode.STANDARD and self.standard is not None:
            self.standard = None
            logger.info("Released standard mode resources")
        elif mode is Mode.AUGMENTED_REALITY and self.ar is not None:
            self.ar = None
            logger.info("Released augmented reality mode resources")

    def tear_down_all(self):
        self.tear_down(Mode.STANDARD)
        self.tear_down(Mode.AUGMENTED_REALITY)

    def for_mode(self, mode: Mode | None):
        if mode is Mode.STANDARD:
            return self.standard
        if mode is Mode.AUGMENTED_REALITY:
            return self.ar
        return None
