"""Discrete user commands and the table that guards them.

Every command is routed through :data:`ROUTES`: a :class:`Route` names the
handler method on the engine and the conditions under which the command
means anything (whether a session must be active, which session states
and which mode).  Commands that fail their guard are dropped quietly;
they are single key presses, not requests that need an answer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .modes import Mode
from .settings import SettingKey
from .transport import SessionState

if TYPE_CHECKING:
    from .session import EngineState

logger = logging.getLogger(__name__)


class Command(Enum):
    QUIT = "quit"
    TOGGLE_ORBIT = "toggle_orbit"
    CONNECT = "connect"
    CLOSE_AND_EXIT_VIEWER = "close_and_exit_viewer"
    SWITCH_MODE = "switch_mode"
    PAUSE_RESUME_MODE = "pause_resume_mode"
    TOGGLE_MASK = "toggle_mask"
    TOGGLE_BACKGROUND = "toggle_background"
    OVERLAY_OFFSET_X_DEC = "overlay_offset_x_dec"
    OVERLAY_OFFSET_X_INC = "overlay_offset_x_inc"
    OVERLAY_OFFSET_Y_DEC = "overlay_offset_y_dec"
    OVERLAY_OFFSET_Y_INC = "overlay_offset_y_inc"
    OVERLAY_OFFSET_X_RESET = "overlay_offset_x_reset"
    OVERLAY_OFFSET_Y_RESET = "overlay_offset_y_reset"
    OVERLAY_SCALE_X_DEC = "overlay_scale_x_dec"
    OVERLAY_SCALE_X_INC = "overlay_scale_x_inc"
    OVERLAY_SCALE_Y_DEC = "overlay_scale_y_dec"
    OVERLAY_SCALE_Y_INC = "overlay_scale_y_inc"
    OVERLAY_SCALE_X_RESET = "overlay_scale_x_reset"
    OVERLAY_SCALE_Y_RESET = "overlay_scale_y_reset"
    RECORDING_QUALITY = "recording_quality"
    RECORDING_START = "recording_start"
    RECORDING_PAUSE_RESUME = "recording_pause_resume"
    RECORDING_FINISH = "recording_finish"
    RECORDING_SAVE = "recording_save"
    RECORDING_DISCARD = "recording_discard"


class Needs(Enum):
    ANYTHING = "anything"
    ACTIVE_SESSION = "active_session"
    NO_ACTIVE_SESSION = "no_active_session"


@dataclass(frozen=True)
class Route:
    handler: str
    needs: Needs = Needs.ACTIVE_SESSION
    states: frozenset[SessionState] | None = None
    mode: Mode | None = None
    args: tuple = ()


_AR_ACTIVE = frozenset({SessionState.MODE_ACTIVE})


def _overlay(handler: str, *args) -> Route:
    return Route(handler, states=_AR_ACTIVE, mode=Mode.AUGMENTED_REALITY, args=args)


ROUTES: dict[Command, Route] = {
    Command.QUIT: Route("quit", Needs.ANYTHING),
    Command.TOGGLE_ORBIT: Route("toggle_orbit", Needs.ANYTHING),
    Command.CONNECT: Route("connect", Needs.NO_ACTIVE_SESSION),
    Command.CLOSE_AND_EXIT_VIEWER: Route("close_and_exit_viewer"),
    Command.SWITCH_MODE: Route(
        "switch_mode", states=frozenset({SessionState.NO_MODE, SessionState.MODE_ACTIVE})),
    Command.PAUSE_RESUME_MODE: Route(
        "pause_resume_mode", states=frozenset({SessionState.MODE_ACTIVE, SessionState.MODE_PAUSED})),
    Command.TOGGLE_MASK: Route("toggle_mask", Needs.ANYTHING),
    Command.TOGGLE_BACKGROUND: Route("toggle_background", Needs.ANYTHING),

    Command.OVERLAY_OFFSET_X_DEC: _overlay("adjust_overlay", SettingKey.OVERLAY_OFFSET_X, -1.0),
    Command.OVERLAY_OFFSET_X_INC: _overlay("adjust_overlay", SettingKey.OVERLAY_OFFSET_X, 1.0),
    Command.OVERLAY_OFFSET_Y_DEC: _overlay("adjust_overlay", SettingKey.OVERLAY_OFFSET_Y, -1.0),
    Command.OVERLAY_OFFSET_Y_INC: _overlay("adjust_overlay", SettingKey.OVERLAY_OFFSET_Y, 1.0),
    Command.OVERLAY_OFFSET_X_RESET: _overlay("reset_overlay", SettingKey.OVERLAY_OFFSET_X),
    Command.OVERLAY_OFFSET_Y_RESET: _overlay("reset_overlay", SettingKey.OVERLAY_OFFSET_Y),
    Command.OVERLAY_SCALE_X_DEC: _overlay("adjust_overlay", SettingKey.OVERLAY_SCALE_X, -1.0),
    Command.OVERLAY_SCALE_X_INC: _overlay("adjust_overlay", SettingKey.OVERLAY_SCALE_X, 1.0),
    Command.OVERLAY_SCALE_Y_DEC: _overlay("adjust_overlay", SettingKey.OVERLAY_SCALE_Y, -1.0),
    Command.OVERLAY_SCALE_Y_INC: _overlay("adjust_overlay", SettingKey.OVERLAY_SCALE_Y, 1.0),
    Command.OVERLAY_SCALE_X_RESET: _overlay("reset_overlay", SettingKey.OVERLAY_SCALE_X),
    Command.OVERLAY_SCALE_Y_RESET: _overlay("reset_overlay", SettingKey.OVERLAY_SCALE_Y),

    Command.RECORDING_QUALITY: Route("recording_quality"),
    Command.RECORDING_START: Route("recording_start"),
    Command.RECORDING_PAUSE_RESUME: Route("recording_pause_resume"),
    Command.RECORDING_FINISH: Route("recording_finish"),
    Command.RECORDING_SAVE: Route("recording_save"),
    Command.RECORDING_DISCARD: Route("recording_discard"),
}


class CommandRouter:
    """Checks a command's guard and calls the matching handler."""

    def __init__(self, state: EngineState, handlers: Any, routes: dict[Command, Route] = ROUTES):
        self.state = state
        self.handlers = handlers
        self.routes = routes

    def allowed(self, command: Command) -> bool:
        route = self.routes[command]
        active = self.state.active
        if route.needs is Needs.NO_ACTIVE_SESSION:
            return active is None
        if route.needs is Needs.ANYTHING:
            return True
        if active is None:
            return False
        if route.states is not None and active.state not in route.states:
            return False
        if route.mode is not None and active.mode is not route.mode:
            return False
        return True

    def dispatch(self, command: Command) -> bool:
        if not self.allowed(command):
            logger.debug("Ignoring %s in current state", command.value)
            return False
        route = self.routes[command]
        getattr(self.handlers, route.handler)(*route.args)
        return True
