"""Keyboard input handler.

Translates Pygame key events into :class:`~viewlink.commands.Command`
values.  Bindings come from ``controls`` in config.yaml and may carry one
modifier (``"ctrl+a"``, ``"shift+r"``); modifiers are resolved here once so
no command handler ever looks at the keyboard state.
"""

from __future__ import annotations

from typing import Callable

import pygame

from .commands import Command
from .config import ControlsCfg

MODIFIERS = ("ctrl", "shift")


def _key_const(name: str) -> int:
    """Resolve a human-friendly key name (from config) to a Pygame key
    constant.  E.g. ``'ESCAPE'`` → ``pygame.K_ESCAPE``."""
    for attr in (f"K_{name}", f"K_{name.lower()}", f"K_{name.upper()}"):
        val = getattr(pygame, attr, None)
        if val is not None:
            return val
    if len(name) == 1:
        return ord(name.lower())
    raise ValueError(f"Unknown key name: {name!r}")


def parse_binding(text: str) -> tuple[str, str]:
    """Split ``"ctrl+a"`` into ``("ctrl", "a")``; plain keys get ``""``."""
    mod, sep, key = text.strip().rpartition("+")
    mod = mod.lower()
    if not sep:
        return "", key
    if mod not in MODIFIERS or not key:
        raise ValueError(f"Bad key binding: {text!r}")
    return mod, key


def event_modifier(mods: int) -> str:
    if mods & pygame.KMOD_CTRL:
        return "ctrl"
    if mods & pygame.KMOD_SHIFT:
        return "shift"
    return ""


class InputHandler:
    """Polls Pygame events and returns the commands pressed since last poll."""

    def __init__(self, cfg: ControlsCfg):
        self.cfg = cfg
        self._keymap: dict[tuple[str, int], Command] = {}
        self._build_keymap()

    def _build_keymap(self):
        for command in Command:
            binding = getattr(self.cfg, command.value, None)
            if not binding:
                continue
            mod, key = parse_binding(binding)
            self._keymap[(mod, _key_const(key))] = command

    def lookup(self, key: int, mods: int) -> Command | None:
        return self._keymap.get((event_modifier(mods), key))

    def poll(self, on_window_event: Callable[[pygame.event.Event], None] | None = None) -> list[Command]:
        """Process all pending Pygame events and return the commands."""
        commands: list[Command] = []
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                commands.append(Command.QUIT)
            elif event.type == pygame.KEYDOWN:
                command = self.lookup(event.key, event.mod)
                if command is not None:
                    commands.append(command)
            elif on_window_event is not None:
                on_window_event(event)
        return commands
