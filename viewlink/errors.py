"""Exception hierarchy for the presenter engine.

Transport failures are *session-scoped*: the engine logs them, retries on
the next tick and only tears the session down once its retry budget is
spent.  :class:`EngineError` is reserved for start-up problems that leave
the presenter with nothing to offer a viewer.
"""

from __future__ import annotations


class PresenterError(Exception):
    """Base class for every error raised by :mod:`viewlink`."""


class TransportError(PresenterError):
    """A session transport operation failed."""

    def __init__(self, op: str, message: str = "", code: int | None = None):
        self.op = op
        self.code = code
        text = f"{op} failed"
        if code is not None:
            text += f" (code={code})"
        if message:
            text += f": {message}"
        super().__init__(text)


class UnsupportedModeError(PresenterError):
    """The transport runtime cannot provide a mode for a descriptor."""


class EngineError(PresenterError):
    """Engine-wide failure; only raised during start-up."""


class SettingsBatchError(PresenterError):
    """Settings batch opened twice or closed without being opened."""
