"""Session bookkeeping and the per-tick session state machine.

:class:`EngineState` is the one mutable record every component works on:
the transport, the resolved mode catalog, the render resources and the
single *active* session.  :class:`SessionMachine` walks the transport's
session list once per tick and reacts to each session's reported state.

Failures are scoped to a session.  A :class:`TransportError` aborts the
rest of that session's tick and bumps its failure counter; the next tick
retries.  Once ``engine.retry_budget`` consecutive ticks have failed the
session is closed with ``CloseReason.ERROR`` and cleaned up as if the
viewer had closed it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .config import ViewlinkCfg
from .errors import TransportError
from .geometry import Viewport
from .modes import Mode, ModeCatalog
from .recording import RecordingMonitor
from .resources import ModeResources
from .settings import SettingsStore
from .transport import CloseAction, CloseReason, SessionState, SessionTransport

if TYPE_CHECKING:
    import numpy as np

    from .negotiator import ModeNegotiator

logger = logging.getLogger(__name__)

REJECT_MESSAGE = "Maximum number of active connections exceeded"


@dataclass
class Session:
    handle: Any
    settings: SettingsStore
    recording: RecordingMonitor
    state: SessionState = SessionState.INITIALIZING
    mode: Mode | None = None
    failures: int = 0             # consecutive failing ticks
    pump_failed: bool = False     # last frame pump raised
    awaiting_ticks: int = 0

    @classmethod
    def open(cls, transport: SessionTransport, handle: Any) -> "Session":
        return cls(
            handle=handle,
            settings=SettingsStore(transport, handle),
            recording=RecordingMonitor(transport, handle),
        )


@dataclass
class EngineState:
    cfg: ViewlinkCfg
    transport: SessionTransport
    catalog: ModeCatalog
    viewport: Viewport
    resources: ModeResources = field(default_factory=ModeResources)
    sessions: dict[Any, Session] = field(default_factory=dict)
    active: Session | None = None
    latest_mode: Mode | None = None
    mode_index: int = 0
    draw_mask: bool = False
    draw_background: bool = True
    status: str = ""
    last_frame: "np.ndarray | None" = None
    frames_sent: int = 0

    @property
    def active_handle(self) -> Any:
        return self.active.handle if self.active else None

    def is_active(self, session: Session) -> bool:
        return self.active is not None and self.active.handle == session.handle


class SessionMachine:
    """Drives every session through one tick of its lifecycle."""

    def __init__(self, state: EngineState, negotiator: ModeNegotiator):
        self.state = state
        self.negotiator = negotiator

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def update(self):
        st = self.state
        handles = st.transport.update_session_list()
        for handle in handles:
            session = st.sessions.get(handle)
            if session is None:
                session = st.sessions[handle] = Session.open(st.transport, handle)
                logger.info("New session %r", handle)
            try:
                self._tick_session(session)
            except TransportError as exc:
                self.record_failure(session, exc)
            else:
                if not session.pump_failed:
                    session.failures = 0

    def _tick_session(self, session: Session):
        st = self.state
        st.transport.update_session(session.handle)
        state = st.transport.get_state(session.handle)
        if state is not session.state:
            logger.info("Session %r: %s => %s", session.handle, session.state.name, state.name)
            session.state = state

        if state is SessionState.AWAITING_ACCEPTANCE:
            self._on_awaiting_acceptance(session)
        elif state is SessionState.NO_MODE:
            st.resources.tear_down(st.latest_mode)
        elif state is SessionState.MODE_SETUP:
            self.negotiator.setup(session)
        elif state.terminal:
            self._clean_up(session)
            return

        session.recording.poll()

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _on_awaiting_acceptance(self, session: Session):
        st = self.state
        if st.is_active(session):
            return
        if st.active is None:
            st.transport.accept(session.handle)
            st.active = session
            self._set_status(st.cfg.node.status_connected)
            logger.info("Accepted session %r", session.handle)
        else:
            st.transport.close(session.handle, CloseAction.NONE,
                               CloseReason.CONNECTION_REJECTED, REJECT_MESSAGE)
            logger.warning("Rejected session %r: %s", session.handle, REJECT_MESSAGE)

    def _clean_up(self, session: Session):
        st = self.state
        if st.is_active(session):
            st.active = None
            st.resources.tear_down(st.latest_mode)
            self._set_status(st.cfg.node.status_not_connected)
            logger.info("Active session %r ended", session.handle)
        st.transport.destroy(session.handle)
        st.sessions.pop(session.handle, None)
        logger.info("Destroyed session %r", session.handle)

    def _set_status(self, status: str):
        self.state.status = status
        self.state.transport.set_node_status(status)

    # ------------------------------------------------------------------
    # Failure policy
    # ------------------------------------------------------------------

    def record_failure(self, session: Session, exc: TransportError):
        """Count a failed tick; close and forget the session once over budget."""
        session.failures += 1
        budget = max(self.state.cfg.engine.retry_budget, 1)
        logger.warning("Session %r: %s (op=%s, code=%s, attempt %d/%d)",
                       session.handle, exc, exc.op, exc.code, session.failures, budget)
        if session.failures < budget:
            return
        if session.state.terminal:
            logger.error("Session %r already closed, clean-up still failing", session.handle)
        else:
            logger.error("Session %r exceeded retry budget, closing", session.handle)
            try:
                self.state.transport.close(session.handle, CloseAction.NONE,
                                           CloseReason.ERROR, f"Transport failure: {exc.op}")
            except TransportError as close_exc:
                logger.warning("Session %r: close after failure also failed: %s",
                               session.handle, close_exc)
            session.state = SessionState.ERROR
        try:
            self._clean_up(session)
        except TransportError as destroy_exc:
            logger.warning("Session %r: destroy failed: %s", session.handle, destroy_exc)
