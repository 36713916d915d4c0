"""Per-session typed settings with atomic batches.

Settings written outside a batch are pushed to the viewer straight away.
Inside :meth:`SettingsStore.begin_batch` / :meth:`SettingsStore.end_batch`
(or the :meth:`SettingsStore.batch` context manager) they are held locally
and flushed as one unit, so the viewer never sees e.g. a new width paired
with the old height.
"""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator

from .errors import SettingsBatchError, TransportError

if TYPE_CHECKING:
    from .transport import SessionTransport

logger = logging.getLogger(__name__)


class ValueType(Enum):
    U16 = "u16"
    U32 = "u32"
    F32 = "f32"


_UINT_MAX = {ValueType.U16: 0xFFFF, ValueType.U32: 0xFFFFFFFF}


class SettingKey(Enum):
    """Setting keys shared with the viewer, each tagged with its value type."""

    IMAGE_WIDTH = ("image_width", ValueType.U16)
    IMAGE_HEIGHT = ("image_height", ValueType.U16)
    VIDEO_RECORDING_QUALITY = ("video_recording_quality", ValueType.U32)
    OVERLAY_OFFSET_X = ("overlay_offset_x", ValueType.F32)
    OVERLAY_OFFSET_Y = ("overlay_offset_y", ValueType.F32)
    OVERLAY_SCALE_X = ("overlay_scale_x", ValueType.F32)
    OVERLAY_SCALE_Y = ("overlay_scale_y", ValueType.F32)

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def value_type(self) -> ValueType:
        return self.value[1]


def coerce_value(key: SettingKey, value: Any) -> int | float:
    """Validate *value* against the key's type and return it normalised."""
    vtype = key.value_type
    if vtype is ValueType.F32:
        fval = float(value)
        if not math.isfinite(fval):
            raise ValueError(f"{key.label} must be finite, got {value!r}")
        return fval
    if isinstance(value, bool) or int(value) != value:
        raise ValueError(f"{key.label} expects an integer, got {value!r}")
    ival = int(value)
    if not 0 <= ival <= _UINT_MAX[vtype]:
        raise ValueError(f"{key.label} out of range for {vtype.value}: {ival}")
    return ival


class SettingsStore:
    """Typed view of one session's settings on top of the transport."""

    def __init__(self, transport: SessionTransport, handle: Any):
        self.transport = transport
        self.handle = handle
        self._pending: dict[SettingKey, int | float] | None = None

    @property
    def in_batch(self) -> bool:
        return self._pending is not None

    def begin_batch(self):
        if self._pending is not None:
            raise SettingsBatchError("settings batch already open")
        self._pending = {}

    def end_batch(self):
        """Flush every buffered write to the viewer as a single unit."""
        if self._pending is None:
            raise SettingsBatchError("no settings batch open")
        pending, self._pending = self._pending, None
        if not pending:
            return
        self.transport.begin_settings_batch(self.handle)
        try:
            for key, value in pending.items():
                self.transport.set_setting(self.handle, key, value)
            self.transport.end_settings_batch(self.handle)
        except TransportError:
            # nothing may stay staged on the viewer side
            try:
                self.transport.cancel_settings_batch(self.handle)
            except TransportError as exc:
                logger.warning("Cancelling settings batch failed: %s", exc)
            raise
        logger.debug("Committed settings batch %s",
                     {k.label: v for k, v in pending.items()})

    def discard_batch(self):
        self._pending = None

    @contextmanager
    def batch(self) -> Iterator["SettingsStore"]:
        """Context manager form; nothing is flushed if the body raises."""
        self.begin_batch()
        try:
            yield self
        except BaseException:
            self.discard_batch()
            raise
        self.end_batch()

    def get(self, key: SettingKey) -> int | float:
        if self._pending is not None and key in self._pending:
            return self._pending[key]
        return self.transport.get_setting(self.handle, key)

    def set(self, key: SettingKey, value: Any):
        value = coerce_value(key, value)
        if self._pending is not None:
            self._pending[key] = value
        else:
            self.transport.set_setting(self.handle, key, value)


def increment_clamped(
    store: SettingsStore,
    key: SettingKey,
    delta: float,
    lo: float,
    hi: float,
) -> float:
    """Read *key*, add *delta*, clamp into ``[lo, hi]`` and write it back."""
    if lo > hi:
        raise ValueError(f"empty clamp range [{lo}, {hi}]")
    value = store.get(key) + delta
    value = min(max(value, lo), hi)
    store.set(key, value)
    return value
