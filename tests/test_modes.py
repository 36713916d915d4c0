from __future__ import annotations

import pytest

from viewlink.errors import EngineError, UnsupportedModeError
from viewlink.loopback import LoopbackTransport
from viewlink.modes import CameraMode, Compositing, Mode, ModeCatalog, RowOrder


class _StandardOnly(LoopbackTransport):
    def resolve_mode(self, descriptor):
        if descriptor == Mode.AUGMENTED_REALITY.descriptor:
            raise UnsupportedModeError("no webcam compositing")
        return super().resolve_mode(descriptor)


class _Nothing(LoopbackTransport):
    def resolve_mode(self, descriptor):
        raise UnsupportedModeError("old runtime")


def test_descriptors():
    std = Mode.STANDARD.descriptor
    ar = Mode.AUGMENTED_REALITY.descriptor
    assert std.compositing is Compositing.NONE
    assert std.camera_mode is CameraMode.LOCAL_HEAD_TRACKED
    assert ar.compositing is Compositing.AUGMENTED_REALITY_CAMERA
    assert ar.camera_mode is CameraMode.REMOTE_MOVABLE
    assert std.row_order is ar.row_order is RowOrder.BOTTOM_TO_TOP


def test_catalog_resolves_both_modes():
    catalog = ModeCatalog()
    supported = catalog.resolve(LoopbackTransport())
    assert catalog.supported == [Mode.STANDARD, Mode.AUGMENTED_REALITY]
    assert [s.handle for s in supported] == [catalog.handle_for(m) for m in catalog.supported]
    assert all(s.available for s in supported)
    assert catalog.mode_for(catalog.handle_for(Mode.AUGMENTED_REALITY)) is Mode.AUGMENTED_REALITY
    assert catalog.mode_for(None) is None
    assert catalog.mode_for("nonsense") is None


def test_unsupported_mode_dropped():
    catalog = ModeCatalog()
    supported = catalog.resolve(_StandardOnly())
    assert catalog.supported == [Mode.STANDARD]
    assert len(supported) == 1


def test_no_supported_modes_is_fatal():
    with pytest.raises(EngineError):
        ModeCatalog().resolve(_Nothing())
