"""
gateway/http_api.py — Planner HTTP API + Web UI Static Server

Stateless request/response surface, built on Python's threaded
http.server and run alongside the WebSocket gateway:

    POST /api/planner   {prompt, history?, userId?, debug?}
                        → 200 {result, sessionId, trusted, confirmation?, raw?}
    GET  /api/history   → 200 {history: [...]}   shared log, newest first
    GET  /*             static files from the web UI directory

The planner endpoint holds no pending actions. When the agent's reply asks
for consent it reports a `confirmation` hint ({action, resumeText}); the
client decides whether to send resumeText as its next prompt.

Handler threads hand each request to the asyncio loop that owns the
gateway and exchange log, so every shared store is still mutated from a
single loop.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import mimetypes
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Optional

from brain.agent_gateway import AgentGateway
from exceptions import PromptValidationError
from gateway.session_store import resolve_user_id
from gateway.validation import MAX_PROMPT_LENGTH, coerce_history, validate_prompt
from memory.exchange_log import Exchange, ExchangeLog
from observability.logger import get_logger
from safety.confirmation_policy import ReplyDrivenPolicy

log = get_logger(__name__)

MAX_BODY_BYTES = 64 * 1024

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": (
        "default-src 'self'; connect-src 'self' ws: wss:; "
        "img-src 'self' data:; frame-ancestors 'none'"
    ),
}

mimetypes.add_type("application/javascript", ".js")
mimetypes.add_type("text/css", ".css")


# ─────────────────────────────────────────────────────────────────────────────
# Request handling (loop side)
# ─────────────────────────────────────────────────────────────────────────────

class PlannerAPI:
    """
    The async half of the HTTP surface. Returns (status, body) pairs and
    never touches sockets, so it can be tested without a server.
    """

    def __init__(
        self,
        gateway: AgentGateway,
        exchange_log: ExchangeLog,
        max_prompt_length: int = MAX_PROMPT_LENGTH,
        history_size: int = 10,
    ):
        self._gateway = gateway
        self._log = exchange_log
        self._max_prompt_length = max_prompt_length
        self._history_size = history_size
        self._hint_policy = ReplyDrivenPolicy()

    async def plan(
        self, payload: Any, remote_addr: Optional[str] = None
    ) -> tuple[int, dict[str, Any]]:
        if not isinstance(payload, dict):
            return HTTPStatus.BAD_REQUEST, {"error": "Request body must be a JSON object"}
        try:
            prompt = validate_prompt(payload.get("prompt"), self._max_prompt_length)
        except PromptValidationError as e:
            log.info("http_api.rejected", reason=str(e))
            return HTTPStatus.BAD_REQUEST, {"error": str(e)}

        history = coerce_history(payload.get("history"), self._history_size)
        user_id = resolve_user_id(payload.get("userId"), remote_addr)

        outcome = await self._gateway.invoke(prompt, history, user_id)
        await self._log.append(Exchange(prompt=prompt, result=outcome.result, user_id=user_id))

        body: dict[str, Any] = {
            "result": outcome.result,
            "sessionId": outcome.session_id,
            "trusted": not outcome.used_fallback,
        }
        if outcome.used_fallback:
            body["fallback"] = True
        else:
            hint = self._hint_policy.after_reply(prompt, outcome.result)
            if hint is not None:
                body["confirmation"] = {"action": hint.action, "resumeText": hint.resume_text}
        if payload.get("debug") is True:
            body["raw"] = outcome.raw
        return HTTPStatus.OK, body

    async def history(self) -> tuple[int, dict[str, Any]]:
        entries = await self._log.snapshot()
        return HTTPStatus.OK, {"history": [e.to_dict() for e in entries]}


# ─────────────────────────────────────────────────────────────────────────────
# HTTP handler (thread side)
# ─────────────────────────────────────────────────────────────────────────────

class PlannerRequestHandler(BaseHTTPRequestHandler):
    """Routes /api/* to PlannerAPI on the owning loop; serves static files otherwise."""

    server_version = "Parley/1.0"

    api: PlannerAPI
    loop: asyncio.AbstractEventLoop
    webui_dir: Path = Path(__file__).parent.parent / "webui"
    call_timeout: float = 60.0

    # ── Routing ───────────────────────────────────────────────────────────────

    def do_POST(self):
        path = self.path.split("?")[0].rstrip("/")
        if path != "/api/planner":
            self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not found"})
            return

        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = -1
        if length < 0:
            self._send_json(HTTPStatus.BAD_REQUEST, {"error": "Invalid Content-Length"})
            self.close_connection = True
            return
        if length > MAX_BODY_BYTES:
            self._send_json(HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
                            {"error": f"Request body exceeds {MAX_BODY_BYTES} bytes"})
            self.close_connection = True
            return

        try:
            payload = json.loads(self.rfile.read(length) or b"")
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._send_json(HTTPStatus.BAD_REQUEST, {"error": "Malformed JSON body"})
            return

        self._dispatch(self.api.plan(payload, self.client_address[0]))

    def do_GET(self):
        path = self.path.split("?")[0]
        if path.rstrip("/") == "/api/history":
            self._dispatch(self.api.history())
            return
        if path.startswith("/api/"):
            self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not found"})
            return
        self._serve_static(path)

    def _dispatch(self, coro) -> None:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            status, body = future.result(timeout=self.call_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            log.error("http_api.timeout", path=self.path)
            self._send_json(HTTPStatus.GATEWAY_TIMEOUT, {"error": "Request timed out"})
            return
        except Exception as e:
            log.error("http_api.handler_error", path=self.path, error=str(e), exc_info=True)
            self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "Internal error"})
            return
        self._send_json(status, body)

    # ── Responses ─────────────────────────────────────────────────────────────

    def _send_json(self, status: int, body: dict) -> None:
        content = json.dumps(body, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(content)))
        self.send_header("Cache-Control", "no-store")
        self._send_security_headers()
        self.end_headers()
        self.wfile.write(content)

    def _send_security_headers(self) -> None:
        for name, value in SECURITY_HEADERS.items():
            self.send_header(name, value)

    def _serve_static(self, path: str) -> None:
        root = self.webui_dir.resolve()
        rel = path.strip("/") or "index.html"

        # Security: prevent directory traversal
        try:
            file_path = (root / rel).resolve()
        except (ValueError, OSError):
            self._send_json(HTTPStatus.BAD_REQUEST, {"error": "Bad path"})
            return
        if not file_path.is_relative_to(root):
            self._send_json(HTTPStatus.FORBIDDEN, {"error": "Forbidden"})
            return

        if not file_path.is_file():
            # SPA routing
            file_path = root / "index.html"
            if not file_path.is_file():
                self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not found"})
                return

        try:
            content = file_path.read_bytes()
        except OSError:
            self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "Read failed"})
            return
        content_type, _ = mimetypes.guess_type(str(file_path))
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", content_type or "application/octet-stream")
        self.send_header("Content-Length", str(len(content)))
        self.send_header("Cache-Control", "no-cache")
        self._send_security_headers()
        self.end_headers()
        self.wfile.write(content)

    def log_message(self, format, *args):
        log.debug("http_api.request", client=self.client_address[0], line=format % args)


# ─────────────────────────────────────────────────────────────────────────────
# Server bootstrap
# ─────────────────────────────────────────────────────────────────────────────

def start_http_server(
    api: PlannerAPI,
    loop: asyncio.AbstractEventLoop,
    host: str = "127.0.0.1",
    port: int = 8080,
    webui_dir: Path | str | None = None,
    call_timeout: float = 60.0,
) -> ThreadingHTTPServer:
    """
    Start the threaded HTTP server on a daemon thread.

    `loop` must be the running loop that owns the gateway. Returns the
    server; call .shutdown() then .server_close() to stop it.
    """
    attrs: dict[str, Any] = {"api": api, "loop": loop, "call_timeout": call_timeout}
    if webui_dir:
        attrs["webui_dir"] = Path(webui_dir)
    handler = type("BoundPlannerRequestHandler", (PlannerRequestHandler,), attrs)

    httpd = ThreadingHTTPServer((host, port), handler)
    httpd.daemon_threads = True
    thread = threading.Thread(target=httpd.serve_forever, name="parley-http", daemon=True)
    thread.start()

    log.info("http_api.started", host=host, port=httpd.server_address[1],
             webui_dir=str(attrs.get("webui_dir", PlannerRequestHandler.webui_dir)))
    return httpd
