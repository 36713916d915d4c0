from __future__ import annotations

import pygame
import pytest

from viewlink.commands import Command
from viewlink.config import ControlsCfg
from viewlink.input_handler import InputHandler, _key_const, parse_binding


@pytest.mark.parametrize("text, expected", [
    ("ctrl+a", ("ctrl", "a")),
    ("Shift+R", ("shift", "R")),
    ("ESCAPE", ("", "ESCAPE")),
    ("c", ("", "c")),
])
def test_parse_binding(text, expected):
    assert parse_binding(text) == expected


@pytest.mark.parametrize("text", ["alt+a", "ctrl+", "super+x"])
def test_parse_binding_rejects(text):
    with pytest.raises(ValueError):
        parse_binding(text)


def test_key_const():
    assert _key_const("ESCAPE") == pygame.K_ESCAPE
    assert _key_const("SPACE") == pygame.K_SPACE
    assert _key_const("a") == pygame.K_a
    with pytest.raises(ValueError):
        _key_const("NOT_A_KEY")


def test_keymap_resolves_modifiers():
    handler = InputHandler(ControlsCfg())
    assert handler.lookup(pygame.K_ESCAPE, 0) is Command.QUIT
    assert handler.lookup(pygame.K_c, 0) is Command.CONNECT
    assert handler.lookup(pygame.K_a, pygame.KMOD_LCTRL) is Command.OVERLAY_OFFSET_X_DEC
    assert handler.lookup(pygame.K_r, pygame.KMOD_LSHIFT) is Command.RECORDING_START
    assert handler.lookup(pygame.K_r, pygame.KMOD_LCTRL) is Command.OVERLAY_SCALE_X_RESET
    assert handler.lookup(pygame.K_a, 0) is None


def test_every_command_is_bound():
    handler = InputHandler(ControlsCfg())
    assert set(handler._keymap.values()) == set(Command)
