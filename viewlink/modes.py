"""Rendering modes offered to the viewer.

Each :class:`Mode` member carries an immutable :class:`ModeDescriptor`
that describes how images are produced and composited.  At start-up the
:class:`ModeCatalog` asks the transport for an opaque handle per
descriptor; descriptors the runtime does not understand (e.g. a newer
mode version) are dropped from the catalog instead of failing the
presenter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import EngineError, UnsupportedModeError

if TYPE_CHECKING:
    from .transport import SessionTransport

logger = logging.getLogger(__name__)


class Compositing(Enum):
    NONE = "none"
    AUGMENTED_REALITY_CAMERA = "augmented_reality_camera"


class CameraMode(Enum):
    LOCAL_HEAD_TRACKED = "local_head_tracked"
    REMOTE_MOVABLE = "remote_movable"


class RowOrder(Enum):
    TOP_TO_BOTTOM = "top_to_bottom"
    BOTTOM_TO_TOP = "bottom_to_top"


class PixelFormat(Enum):
    R8_G8_B8_A8 = "r8_g8_b8_a8"


@dataclass(frozen=True)
class ModeDescriptor:
    version: int
    compositing: Compositing
    camera_mode: CameraMode
    row_order: RowOrder = RowOrder.BOTTOM_TO_TOP
    pixel_format: PixelFormat = PixelFormat.R8_G8_B8_A8


class Mode(Enum):
    STANDARD = ModeDescriptor(
        version=0,
        compositing=Compositing.NONE,
        camera_mode=CameraMode.LOCAL_HEAD_TRACKED,
    )
    AUGMENTED_REALITY = ModeDescriptor(
        version=0,
        compositing=Compositing.AUGMENTED_REALITY_CAMERA,
        camera_mode=CameraMode.REMOTE_MOVABLE,
    )

    @property
    def descriptor(self) -> ModeDescriptor:
        return self.value

    @property
    def label(self) -> str:
        return "standard" if self is Mode.STANDARD else "augmented-reality"


class ModeAvailability(Enum):
    AVAILABLE = "available"
    NOT_AVAILABLE = "not_available"


@dataclass(frozen=True)
class SupportedMode:
    """One entry of a session's supported-mode list (handle + availability)."""

    handle: Any
    availability: ModeAvailability = ModeAvailability.AVAILABLE

    @property
    def available(self) -> bool:
        return self.availability is ModeAvailability.AVAILABLE


class ModeCatalog:
    """Maps :class:`Mode` members to the transport's opaque handles."""

    def __init__(self, modes: tuple[Mode, ...] = (Mode.STANDARD, Mode.AUGMENTED_REALITY)):
        self.modes = modes
        self._handles: dict[Mode, Any] = {}

    def resolve(self, transport: SessionTransport) -> list[SupportedMode]:
        """Resolve every mode to a handle; unsupported ones are skipped.

        Returns the supported-mode list to register with the transport.
        """
        self._handles.clear()
        for mode in self.modes:
            try:
                self._handles[mode] = transport.resolve_mode(mode.descriptor)
            except UnsupportedModeError as exc:
                logger.warning("Mode %s unavailable in this runtime: %s", mode.label, exc)
        if not self._handles:
            raise EngineError("transport supports none of the presenter's modes")
        return [SupportedMode(h) for h in self._handles.values()]

    @property
    def supported(self) -> list[Mode]:
        return [m for m in self.modes if m in self._handles]

    def handle_for(self, mode: Mode) -> Any:
        return self._handles[mode]

    def mode_for(self, handle: Any) -> Mode | None:
        """Return the :class:`Mode` for a transport handle (``None`` if unknown)."""
        if handle is None:
            return None
        for mode, known in self._handles.items():
            if known == handle:
                return mode
        return None
