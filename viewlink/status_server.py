"""Status & control server for the presenter.

Runs a lightweight Flask server in a daemon thread.  The main loop pushes
the last image sent to the viewer into :meth:`StatusServer.update_frame`
and an engine status dict into :meth:`StatusServer.update_status`; the
browser sends commands back through a queue the main loop drains.

Endpoints:

* ``GET  /``                  – small control page.
* ``GET  /video_feed``        – MJPEG of the frames sent to the viewer.
* ``GET  /api/status``        – engine status as JSON.
* ``POST /api/action/<name>`` – queue a :class:`~viewlink.commands.Command`.
"""

from __future__ import annotations

import logging
import queue
import threading
import time

import cv2
import numpy as np
from flask import Flask, Response, jsonify, render_template_string

from .commands import Command
from .config import StreamCfg

logger = logging.getLogger(__name__)

_INDEX_HTML = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8"/>
<title>Viewlink presenter</title>
<style>
  body { background:#111; color:#ddd; font-family:sans-serif; margin:1em; }
  img  { max-width:100%; border:1px solid #333; }
  button { margin:2px; background:#222; color:#ddd; border:1px solid #444; }
  pre  { background:#1a1a1a; padding:.5em; }
</style>
</head>
<body>
<h3>Viewlink presenter</h3>
<img src="/video_feed" alt="frames sent to the viewer"/>
<div>
{% for name in commands %}<button onclick="act('{{ name }}')">{{ name }}</button>{% endfor %}
</div>
<pre id="status"></pre>
<script>
function act(name) { fetch('/api/action/' + name, {method: 'POST'}); }
async function poll() {
  const r = await fetch('/api/status');
  document.getElementById('status').textContent = JSON.stringify(await r.json(), null, 2);
}
setInterval(poll, 500);
</script>
</body>
</html>
"""


def encode_jpeg(frame_rgba: np.ndarray, quality: int = 80) -> bytes | None:
    """RGBA frame → JPEG bytes (``None`` if OpenCV refuses to encode)."""
    bgr = cv2.cvtColor(frame_rgba, cv2.COLOR_RGBA2BGR)
    ok, jpeg = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, quality])
    return jpeg.tobytes() if ok else None


class StatusServer:
    """Flask server running in a background thread."""

    def __init__(self, cfg: StreamCfg):
        self.cfg = cfg
        self._frame: np.ndarray | None = None
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._client_count: int = 0

        # browser → main loop
        self._cmd_queue: queue.Queue[Command] = queue.Queue()

        # main loop → browser
        self._status: dict = {}
        self._status_lock = threading.Lock()

        self.app = self._create_app()

    # ------------------------------------------------------------------
    # Frame update (called from main loop)
    # ------------------------------------------------------------------

    def update_frame(self, frame: np.ndarray | None):
        # The engine reuses its render target every tick, so a streaming
        # client needs its own copy.  Without clients a reference will do.
        if frame is None:
            return
        if self._client_count <= 0:
            self._frame = frame
            return
        with self._lock:
            self._frame = frame.copy()

    # ------------------------------------------------------------------
    # Command queue (browser → main loop)
    # ------------------------------------------------------------------

    def push_command(self, command: Command):
        self._cmd_queue.put_nowait(command)

    def drain_commands(self) -> list[Command]:
        cmds: list[Command] = []
        while True:
            try:
                cmds.append(self._cmd_queue.get_nowait())
            except queue.Empty:
                break
        return cmds

    # ------------------------------------------------------------------
    # Status (main loop → browser)
    # ------------------------------------------------------------------

    def update_status(self, status: dict):
        with self._status_lock:
            self._status = status

    def get_status(self) -> dict:
        with self._status_lock:
            return dict(self._status)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        self._thread = threading.Thread(
            target=self._run_server, daemon=True, name="status-server"
        )
        self._thread.start()
        logger.info("Status server at http://localhost:%d/", self.cfg.port)

    def _run_server(self):
        logging.getLogger("werkzeug").setLevel(logging.ERROR)  # silence per-request logs
        self.app.run(
            host=self.cfg.host,
            port=self.cfg.port,
            threaded=True,
            use_reloader=False,
        )

    # ------------------------------------------------------------------
    # Flask app factory
    # ------------------------------------------------------------------

    def _create_app(self) -> Flask:
        app = Flask(__name__)
        server = self

        @app.route("/")
        def index():
            return render_template_string(_INDEX_HTML, commands=[c.value for c in Command])

        @app.route("/video_feed")
        def video_feed():
            return Response(
                server._generate(),
                mimetype="multipart/x-mixed-replace; boundary=frame",
            )

        @app.route("/api/action/<action_name>", methods=["POST"])
        def api_action(action_name: str):
            try:
                command = Command(action_name)
            except ValueError:
                return jsonify({"error": f"Unknown action: {action_name}",
                                "valid": sorted(c.value for c in Command)}), 400
            server.push_command(command)
            return jsonify({"ok": True, "action": action_name})

        @app.route("/api/status")
        def api_status():
            return jsonify(server.get_status())

        return app

    def _generate(self):
        """MJPEG generator for the streaming response."""
        self._client_count += 1
        try:
            while True:
                with self._lock:
                    frame = self._frame.copy() if self._frame is not None else None
                if frame is None:
                    time.sleep(0.05)
                    continue
                jpeg = encode_jpeg(frame, self.cfg.jpeg_quality)
                if jpeg is None:
                    time.sleep(0.02)
                    continue
                yield (
                    b"--frame\r\n"
                    b"Content-Type: image/jpeg\r\n\r\n"
                    + jpeg
                    + b"\r\n"
                )
                time.sleep(0.033)
        finally:
            self._client_count -= 1
