from __future__ import annotations

import pytest

from viewlink.config import ViewlinkCfg
from viewlink.engine import PresenterEngine
from viewlink.loopback import LoopbackTransport
from viewlink.tracking import SimulatedTracking
from viewlink.transport import SessionState


@pytest.fixture
def cfg():
    """Small images so the software renderer stays quick."""
    cfg = ViewlinkCfg()
    cfg.display.width = 64
    cfg.display.height = 48
    cfg.display.headless = True
    cfg.stream.enabled = False
    cfg.loopback.ar_image_width = 80
    cfg.loopback.ar_image_height = 60
    return cfg


@pytest.fixture
def tracking():
    return SimulatedTracking()


@pytest.fixture
def transport(cfg):
    t = LoopbackTransport(cfg.loopback)
    t.start_listening()
    return t


@pytest.fixture
def make_engine(cfg):
    """Build a started engine; keyword args override ``cfg.loopback``."""

    def _make(connect: bool = True, **loopback) -> PresenterEngine:
        for key, value in loopback.items():
            setattr(cfg.loopback, key, value)
        engine = PresenterEngine(cfg, LoopbackTransport(cfg.loopback))
        engine.start()
        if connect:
            engine.connect()
        return engine

    return _make


@pytest.fixture
def run_until():
    """Tick *engine* until *predicate(engine)* holds; returns the pump results."""

    def _run(engine: PresenterEngine, predicate, limit: int = 30):
        results = []
        for _ in range(limit):
            results.append(engine.tick(1 / 60))
            if predicate(engine):
                return results
        raise AssertionError(f"condition not reached after {limit} ticks")

    return _run


def in_state(state: SessionState):
    def _check(engine: PresenterEngine) -> bool:
        active = engine.state.active
        return active is not None and active.state is state
    return _check


@pytest.fixture
def active_engine(make_engine, run_until):
    """Engine whose viewer has reached ``MODE_ACTIVE`` in *mode_label*."""

    def _make(mode_label: str = "standard", **loopback) -> PresenterEngine:
        engine = make_engine(auto_mode=mode_label, **loopback)
        run_until(engine, in_state(SessionState.MODE_ACTIVE))
        return engine

    return _make
