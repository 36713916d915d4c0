from __future__ import annotations

from viewlink.modes import Mode
from viewlink.resources import ModeResources


def test_standard_setup_is_idempotent():
    resources = ModeResources()
    first = resources.set_up_standard(64, 48)
    first.frame_number = 12
    again = resources.set_up_standard(64, 48)
    assert again is first
    assert again.frame_number == 12
    assert resources.allocations == 1


def test_resize_reallocates():
    resources = ModeResources()
    first = resources.set_up_standard(64, 48)
    second = resources.set_up_standard(32, 24)
    assert second is not first
    assert second.surface.size == (32, 24)
    assert resources.allocations == 2


def test_ar_resources_hold_mask_and_background():
    resources = ModeResources()
    res = resources.set_up_ar(80, 60)
    assert res.surface.color.shape == (60, 80, 4)
    assert res.mask_vertices.shape == (32, 3)
    assert res.background_quad.shape == (4, 3)
    assert resources.set_up_ar(80, 60) is res


def test_teardown_is_idempotent():
    resources = ModeResources()
    resources.set_up_standard(16, 16)
    resources.set_up_ar(16, 16)
    resources.tear_down(Mode.STANDARD)
    resources.tear_down(Mode.STANDARD)
    resources.tear_down(None)
    assert resources.standard is None
    assert resources.for_mode(Mode.AUGMENTED_REALITY) is resources.ar
    resources.tear_down_all()
    resources.tear_down_all()
    assert resources.for_mode(Mode.AUGMENTED_REALITY) is None
