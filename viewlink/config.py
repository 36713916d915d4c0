"""Configuration loader for Viewlink.

Reads config.yaml and exposes a flat namespace with sane defaults so the
rest of the codebase never has to worry about missing keys.
"""

from __future__ import annotations

import os
import yaml
from dataclasses import dataclass, field
from typing import List, Tuple


# ---------------------------------------------------------------------------
# Data-classes that mirror config.yaml
# ---------------------------------------------------------------------------

@dataclass
class DisplayCfg:
    width: int = 1024
    height: int = 768
    x: int = 0
    y: int = 0
    fullscreen: bool = False
    fps: int = 60
    headless: bool = False         # run without a pygame window


@dataclass
class NodeCfg:
    name: str = "Viewlink Presenter"
    status_not_connected: str = "Awaiting connection"
    status_connected: str = "Connected"


@dataclass
class EngineCfg:
    retry_budget: int = 3          # consecutive failing ticks before teardown
    setup_timeout_ticks: int = 0   # 0 = wait for the viewer indefinitely
    auto_connect: bool = False     # connect to the default viewer at start-up


@dataclass
class ArCfg:
    near_clip: float = 0.1
    far_clip: float = 100.0
    mask_cube_side: float = 10.0   # metres
    offset_step: float = 1.0       # pixels
    scale_step: float = 0.01
    scale_min: float = 0.01
    scale_max: float = 10.0
    draw_mask: bool = False
    draw_background: bool = True
    background_color: Tuple[int, int, int, int] = (0, 0, 0, 255)


@dataclass
class SceneCfg:
    cube_half_size: float = 0.03   # metres
    stylus_length: float = 0.1     # metres
    rotation_per_second: float = 45.0
    orbit: bool = True
    standard_clear_color: Tuple[int, int, int, int] = (0, 255, 0, 128)


@dataclass
class RecordingCfg:
    save_name: str = "ViewlinkVideoRecordingSave.mp4"
    save_dir: str = ""             # empty = current working directory


@dataclass
class ControlsCfg:
    quit: str = "ESCAPE"
    toggle_orbit: str = "SPACE"
    connect: str = "c"
    close_and_exit_viewer: str = "e"
    switch_mode: str = "m"
    pause_resume_mode: str = "p"
    toggle_mask: str = "v"
    toggle_background: str = "b"
    overlay_offset_x_dec: str = "ctrl+a"
    overlay_offset_x_inc: str = "ctrl+d"
    overlay_offset_y_dec: str = "ctrl+s"
    overlay_offset_y_inc: str = "ctrl+w"
    overlay_offset_x_reset: str = "ctrl+q"
    overlay_offset_y_reset: str = "ctrl+e"
    overlay_scale_x_dec: str = "ctrl+f"
    overlay_scale_x_inc: str = "ctrl+h"
    overlay_scale_y_dec: str = "ctrl+g"
    overlay_scale_y_inc: str = "ctrl+t"
    overlay_scale_x_reset: str = "ctrl+r"
    overlay_scale_y_reset: str = "ctrl+y"
    recording_quality: str = "shift+q"
    recording_start: str = "shift+r"
    recording_pause_resume: str = "shift+p"
    recording_finish: str = "shift+f"
    recording_save: str = "shift+s"
    recording_discard: str = "shift+d"


@dataclass
class StreamCfg:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080
    jpeg_quality: int = 80


@dataclass
class LoopbackCfg:
    send_slots: int = 2            # outgoing frames the viewer can hold
    remote_delay_ticks: int = 0    # ticks before the viewer completes a phase
    camera_frames: bool = True     # viewer streams AR webcam frames
    recording: bool = True         # viewer supports video recording
    ar_image_width: int = 640
    ar_image_height: int = 480
    unavailable_modes: List[str] = field(default_factory=list)
    auto_mode: str = "standard"    # mode the viewer picks after acceptance


@dataclass
class LoggingCfg:
    level: str = "INFO"


@dataclass
class ViewlinkCfg:
    display: DisplayCfg = field(default_factory=DisplayCfg)
    node: NodeCfg = field(default_factory=NodeCfg)
    engine: EngineCfg = field(default_factory=EngineCfg)
    ar: ArCfg = field(default_factory=ArCfg)
    scene: SceneCfg = field(default_factory=SceneCfg)
    recording: RecordingCfg = field(default_factory=RecordingCfg)
    controls: ControlsCfg = field(default_factory=ControlsCfg)
    stream: StreamCfg = field(default_factory=StreamCfg)
    loopback: LoopbackCfg = field(default_factory=LoopbackCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _merge(dataclass_obj, raw_dict: dict | None):
    """Recursively overwrite dataclass fields from a plain dict."""
    if raw_dict is None:
        return dataclass_obj
    for key, value in raw_dict.items():
        if not hasattr(dataclass_obj, key):
            continue
        current = getattr(dataclass_obj, key)
        if hasattr(current, "__dataclass_fields__"):
            _merge(current, value)
        elif isinstance(current, tuple) and isinstance(value, list):
            setattr(dataclass_obj, key, tuple(value))
        else:
            setattr(dataclass_obj, key, value)
    return dataclass_obj


def load_config(path: str | None = None) -> ViewlinkCfg:
    """Load configuration from *path* (defaults to ``config.yaml`` next to
    the project root).  Missing keys silently fall back to defaults."""
    if path is None:
        path = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config.yaml")
    cfg = ViewlinkCfg()
    if os.path.isfile(path):
        with open(path, "r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
        _merge(cfg, raw)
    return cfg
