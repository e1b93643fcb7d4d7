#!/usr/bin/env python3
"""Minimal stand-in for the Orbit agent, used by the integration tests.

Reads the same ORBIT_* variables as the real agent and serves the subset of
the HTTP API the smoke harness touches. FAKE_AGENT_* variables switch on
misbehaviour for failure-path tests:

    FAKE_AGENT_STARTUP_DELAY   seconds to wait before listening
    FAKE_AGENT_EXIT_CODE       exit with this code instead of listening
    FAKE_AGENT_NO_TASKS        accept container creation but record no task
    FAKE_AGENT_IGNORE_SCOPES   let any valid token do anything
    FAKE_AGENT_IGNORE_SIGTERM  keep running on SIGTERM
"""
import json
import os
import signal
import sys
import time
import uuid
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse


ADMIN_TOKEN = os.environ.get("ORBIT_ADMIN_TOKEN", "")
TOKENS = {}  # secret -> token info
TASKS = []
CONTAINERS = []


def now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def flag(name: str) -> bool:
    return os.environ.get(name, "") in ("1", "true")


class Handler(BaseHTTPRequestHandler):

    def log_message(self, format, *args):
        sys.stderr.write("fake-agent: " + (format % args) + "\n")

    def _send(self, status: int, body=None):
        data = b"" if body is None else json.dumps(body).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _body(self) -> dict:
        length = int(self.headers.get("Content-Length") or 0)
        return json.loads(self.rfile.read(length) or b"{}")

    def _auth(self):
        header = self.headers.get("Authorization", "")
        secret = header[len("Bearer "):] if header.startswith("Bearer ") else ""
        if secret and secret == ADMIN_TOKEN:
            return "admin"
        info = TOKENS.get(secret)
        if info and not info["revoked_at"]:
            return info
        return None

    def _allowed(self, ctx, scope: str) -> bool:
        if ctx == "admin" or flag("FAKE_AGENT_IGNORE_SCOPES"):
            return True
        return scope in ctx["scopes"]

    def do_GET(self):
        ctx = self._auth()
        if ctx is None:
            return self._send(401)
        url = urlparse(self.path)
        if url.path == "/system/info":
            return self._send(200, {
                "version": "0.0.0-test",
                "build": "fake",
                "uptime_seconds": 0,
                "driver_status": "not-configured",
            })
        if url.path == "/containers":
            if not self._allowed(ctx, "containers:read"):
                return self._send(403)
            return self._send(200, CONTAINERS)
        if url.path == "/tasks":
            if not self._allowed(ctx, "tasks:read"):
                return self._send(403)
            limit = int(parse_qs(url.query).get("limit", ["50"])[0])
            return self._send(200, list(reversed(TASKS))[:limit])
        return self._send(404)

    def do_POST(self):
        ctx = self._auth()
        if ctx is None:
            return self._send(401)
        body = self._body()
        if self.path == "/security/tokens":
            if ctx != "admin":
                return self._send(403)
            if not body.get("name", "").strip():
                return self._send(400)
            try:
                datetime.fromisoformat(body["expires_at"].replace("Z", "+00:00"))
            except (KeyError, ValueError):
                return self._send(400)
            secret = "orbit_" + uuid.uuid4().hex
            info = {
                "id": str(uuid.uuid4()),
                "name": body["name"].strip(),
                "prefix": secret[:10],
                "scopes": body.get("scopes") or ["containers:read", "tasks:read"],
                "created_at": now(),
                "expires_at": body["expires_at"],
                "revoked_at": None,
            }
            TOKENS[secret] = info
            return self._send(201, dict(info, token=secret))
        if self.path == "/containers":
            if not self._allowed(ctx, "containers:write"):
                return self._send(403)
            task = {
                "id": str(uuid.uuid4()),
                "type": "container.create",
                "status": "queued",
                "progress": 0,
                "message": None,
                "created_at": now(),
                "updated_at": now(),
            }
            CONTAINERS.append({"id": str(uuid.uuid4()), "name": body.get("name"),
                               "platform": body.get("platform")})
            if not flag("FAKE_AGENT_NO_TASKS"):
                TASKS.append(task)
            return self._send(200, task)
        return self._send(404)

    def do_DELETE(self):
        ctx = self._auth()
        if ctx is None:
            return self._send(401)
        if not self.path.startswith("/security/tokens/"):
            return self._send(404)
        if ctx != "admin":
            return self._send(403)
        token_id = self.path.rsplit("/", 1)[-1]
        for info in TOKENS.values():
            if info["id"] == token_id:
                info["revoked_at"] = now()
                return self._send(204)
        return self._send(404)


def main():
    if flag("FAKE_AGENT_IGNORE_SIGTERM"):
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    time.sleep(float(os.environ.get("FAKE_AGENT_STARTUP_DELAY", "0")))
    if "FAKE_AGENT_EXIT_CODE" in os.environ:
        print("fake-agent: failing on purpose", flush=True)
        sys.exit(int(os.environ["FAKE_AGENT_EXIT_CODE"]))

    host, port = os.environ["ORBIT_API_BIND"].rsplit(":", 1)
    server = ThreadingHTTPServer((host, int(port)), Handler)
    print(f"fake-agent: listening on {host}:{port}", flush=True)
    server.serve_forever()


if __name__ == "__main__":
    main()
