import json
import logging
import math
import time
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional, Tuple

from binary_event_bot.engine.bot import BotEngine

log = logging.getLogger(__name__)


class BadRequest(ValueError):
    pass


class ControlServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: Tuple[str, int], engine: BotEngine):
        super().__init__(address, Handler)
        self.engine = engine


class Handler(BaseHTTPRequestHandler):
    server: ControlServer

    def log_message(self, fmt, *args):
        log.debug("%s - %s", self.address_string(), fmt % args)

    @property
    def engine(self) -> BotEngine:
        return self.server.engine

    def _send_json(self, payload, status: int = 200) -> None:
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _read_json(self) -> dict:
        n = int(self.headers.get("Content-Length") or 0)
        if n <= 0:
            return {}
        try:
            data = json.loads(self.rfile.read(n))
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise BadRequest("invalid JSON body")
        if not isinstance(data, dict):
            raise BadRequest("JSON body must be an object")
        return data

    def _stream_events(self) -> None:
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Cache-Control", "no-cache")
        self.send_header("Connection", "keep-alive")
        self.end_headers()

        last_blob = None
        try:
            while True:
                blob = json.dumps({"status": self.engine.snapshot(), "serverTime": datetime.now(timezone.utc).isoformat()})
                if blob != last_blob:
                    self.wfile.write(f"data: {blob}\n\n".encode())
                    self.wfile.flush()
                    last_blob = blob
                time.sleep(0.5)
        except (BrokenPipeError, ConnectionResetError):
            return

    def do_GET(self):
        path = self.path.split("?", 1)[0]
        eng = self.engine

        if path == "/health":
            body = b"ok"
            self.send_response(200)
            self.send_header("Content-Type", "text/plain")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
            return
        if path == "/events":
            self._stream_events()
            return

        if path == "/api/status":
            self._send_json(eng.snapshot())
        elif path == "/api/config":
            self._send_json(eng.cfg.model_dump(mode="json"))
        elif path == "/api/report":
            self._send_json(eng.report())
        elif path == "/api/market-mode":
            self._send_json({"marketDataMode": eng.feeds.mode})
        elif path == "/api/replay/progress":
            self._send_json(eng.feeds.get_feed().get_progress() or {"index": 0, "total": 0, "percent": 0.0, "current_ts": None})
        elif path == "/api/replay/files":
            self._send_json({"files": eng.feeds.list_replay_files()})
        else:
            self._send_json({"error": "not found"}, status=404)

    def do_POST(self):
        path = self.path.split("?", 1)[0]
        try:
            payload = self._route_post(path, self._read_json())
        except ValueError as e:
            self._send_json({"error": str(e)}, status=400)
            return
        if payload is None:
            self._send_json({"error": "not found"}, status=404)
            return
        self._send_json(payload)

    def _route_post(self, path: str, body: dict) -> Optional[dict]:
        eng = self.engine

        if path == "/api/bot/toggle":
            return {"botEnabled": eng.toggle(), "engineRunning": eng.is_running()}
        if path == "/api/reset":
            eng.reset_scenario(restart=True)
            return {"ok": True}
        if path == "/api/market-mode":
            return {"marketDataMode": eng.set_market_data_mode(body.get("mode"))}

        if path == "/api/replay/start":
            eng.start_replay()
        elif path == "/api/replay/pause":
            eng.pause_replay()
        elif path == "/api/replay/resume":
            eng.resume_replay()
        elif path == "/api/replay/stop":
            eng.stop_replay()
        elif path == "/api/replay/load":
            file_path = body.get("filePath")
            if not file_path or not isinstance(file_path, str):
                raise BadRequest("filePath required")
            eng.load_replay_file(file_path)
        elif path == "/api/replay/speed":
            speed = body.get("speed")
            if isinstance(speed, bool) or not isinstance(speed, (int, float)) or not math.isfinite(speed) or speed <= 0:
                raise BadRequest("speed must be a positive number")
            eng.set_replay_speed(float(speed))
        else:
            return None
        return {"ok": True}


def serve(engine: BotEngine, host: str, port: int) -> ControlServer:
    return ControlServer((host, port), engine)
