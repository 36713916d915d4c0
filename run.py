#!/usr/bin/env python3
"""Viewlink – presenter for a one-to-one viewer session.

Usage
-----
    python run.py                  # use config.yaml in the project root
    python run.py --config my.yaml # custom config
    python run.py --test           # connect to the loopback viewer at start-up
    python run.py --headless       # no window; status server only
"""

from __future__ import annotations

import argparse
import logging

from viewlink.app import PresenterApp
from viewlink.config import load_config
from viewlink.errors import EngineError


def main():
    parser = argparse.ArgumentParser(description="Viewlink – presenter for a one-to-one viewer session")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    parser.add_argument("--test", action="store_true", help="Auto-connect to the loopback viewer")
    parser.add_argument("--windowed", action="store_true", help="Run in a window (not fullscreen)")
    parser.add_argument("--headless", action="store_true", help="Run without a local window")
    parser.add_argument("--ticks", type=int, default=None, help="Stop after N ticks")
    args = parser.parse_args()

    cfg = load_config(args.config)
    if args.test:
        cfg.engine.auto_connect = True
    if args.windowed:
        cfg.display.fullscreen = False
    if args.headless:
        cfg.display.headless = True

    logging.basicConfig(level=cfg.logging.level, format="[%(name)s] %(message)s")

    app = PresenterApp(cfg, max_ticks=args.ticks)
    try:
        app.run()
    except EngineError as exc:
        raise SystemExit(f"[viewlink] {exc}")


if __name__ == "__main__":
    main()
