"""Two-phase mode setup handshake.

Whenever a session enters ``MODE_SETUP`` both sides walk through an
*initialization* phase and a *completion* phase.  In each phase the
presenter does its local work and then signals completion; the viewer
does the same.  While the presenter has signalled and the viewer has
not, the transport reports ``awaiting_completion`` and this module simply
waits for the next tick.

Standard mode
    initialization: publish the local viewport size as the image size.
    completion: allocate the render target and view context.

Augmented reality mode
    initialization: nothing, the viewer sizes the image to its webcam.
    completion: read the viewer's image size and allocate mask geometry
    and the shared colour + depth/stencil target.
"""

from __future__ import annotations

import logging

from .errors import TransportError
from .modes import Mode
from .session import EngineState, Session
from .settings import SettingKey
from .tracking import TrackingProvider
from .transport import CloseAction, CloseReason, SetupPhase

logger = logging.getLogger(__name__)

SETUP_TIMEOUT_MESSAGE = "Viewer did not complete mode setup in time"


class ModeNegotiator:

    def __init__(self, state: EngineState, tracking: TrackingProvider):
        self.state = state
        self.tracking = tracking

    def setup(self, session: Session):
        st = self.state
        transport = st.transport

        mode_handle = transport.get_mode(session.handle)
        mode = st.catalog.mode_for(mode_handle)
        if mode is None:
            logger.warning("Session %r: ignoring setup for unknown mode %r",
                           session.handle, mode_handle)
            return
        session.mode = mode

        if mode is not st.latest_mode:
            if st.latest_mode is not None:
                logger.info("Mode change %s => %s", st.latest_mode.label, mode.label)
            st.resources.tear_down(st.latest_mode)
            st.latest_mode = mode

        phase, awaiting = transport.get_setup_phase(session.handle)
        if awaiting:
            self._wait(session, phase)
            return
        session.awaiting_ticks = 0

        if phase is SetupPhase.INITIALIZATION:
            self._initialize(session, mode)
        else:
            self._complete(session, mode)
        transport.complete_setup_phase(session.handle, phase)
        logger.info("Completed %s phase of %s mode setup", phase.name.lower(), mode.label)

    # ------------------------------------------------------------------

    def _wait(self, session: Session, phase: SetupPhase):
        session.awaiting_ticks += 1
        limit = self.state.cfg.engine.setup_timeout_ticks
        if limit <= 0 or session.awaiting_ticks <= limit:
            return
        logger.error("Session %r: viewer stalled in %s phase for %d ticks",
                     session.handle, phase.name.lower(), session.awaiting_ticks)
        self.state.transport.close(session.handle, CloseAction.NONE,
                                   CloseReason.ERROR, SETUP_TIMEOUT_MESSAGE)

    def _initialize(self, session: Session, mode: Mode):
        if mode is not Mode.STANDARD:
            return
        width, height = self.state.viewport.size
        with session.settings.batch() as settings:
            settings.set(SettingKey.IMAGE_WIDTH, width)
            settings.set(SettingKey.IMAGE_HEIGHT, height)
        logger.info("Standard mode image size %dx%d", width, height)

    def _complete(self, session: Session, mode: Mode):
        st = self.state
        cfg = st.cfg.ar
        width = int(session.settings.get(SettingKey.IMAGE_WIDTH))
        height = int(session.settings.get(SettingKey.IMAGE_HEIGHT))
        if width <= 0 or height <= 0:
            raise TransportError("get_setting", f"viewer reported image size {width}x{height}")
        if mode is Mode.STANDARD:
            res = st.resources.set_up_standard(width, height)
            res.view = self.tracking.center_eye(st.viewport, cfg.near_clip, cfg.far_clip)
        else:
            st.resources.set_up_ar(width, height)
