"""
gateway/gateway_server.py — WebSocket Gateway Server

Stateful conversation surface. Each WebSocket connection owns exactly one
ConversationView, so a pending confirmation lives as long as the
connection does. Uses the `websockets` library.

Client → server messages (see gateway.protocol):
    ask             {"message": "...", "debug": false}
    confirm         {}
    cancel          {}
    session.status  {}
    ping            {}

The user id for a connection comes from the `user_id` query parameter of
the WebSocket URL, falling back to the remote address.

Usage:
    server = GatewayServer(stack.orchestrator, host="127.0.0.1", port=9090)
    await server.start()          # starts listening
    await server.wait_closed()    # blocks until shutdown
"""

from __future__ import annotations

import asyncio
from typing import Optional
from urllib.parse import parse_qs, urlsplit

import websockets
from websockets.asyncio.server import ServerConnection

from agent.orchestrator import ConfirmationOrchestrator
from agent.response_synthesizer import AgentResponse
from agent.session import ConversationView
from exceptions import PromptValidationError
from gateway.protocol import (
    GatewayMessage,
    MessageType,
    from_agent_response,
    make_error,
    make_pong,
    make_session_created,
    make_session_updated,
)
from gateway.session_store import resolve_user_id
from observability.logger import get_logger

log = get_logger(__name__)

_AUTH_TIMEOUT = 10.0


class GatewayServer:
    """
    WebSocket gateway server.

    Accepts WebSocket connections and routes JSON messages to the
    orchestrator, one ConversationView per connection.
    """

    def __init__(
        self,
        orchestrator: ConfirmationOrchestrator,
        *,
        host: str = "127.0.0.1",
        port: int = 9090,
        auth_token: Optional[str] = None,
        max_connections: int = 10,
        history_size: int = 10,
    ):
        self._orchestrator = orchestrator
        self._host = host
        self._port = port
        self._auth_token = auth_token
        self._max_connections = max_connections
        self._history_size = history_size
        self._server = None

        self._connections: dict[ServerConnection, ConversationView] = {}
        # Per-view lock so a confirm can't interleave with an in-flight ask
        self._view_locks: dict[str, asyncio.Lock] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the WebSocket server."""
        self._server = await websockets.serve(
            self._handler,
            self._host,
            self._port,
            max_size=2**16,  # 64 KiB max message
        )
        log.info(
            "gateway.started",
            host=self._host,
            port=self._port,
            max_connections=self._max_connections,
            auth=bool(self._auth_token),
        )

    async def wait_closed(self) -> None:
        """Block until the server is closed."""
        if self._server:
            await self._server.wait_closed()

    async def shutdown(self) -> None:
        """Gracefully shut down the server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
        log.info("gateway.stopped")

    # ─────────────────────────────────────────────────────────────────────────
    # Connection handler
    # ─────────────────────────────────────────────────────────────────────────

    async def _handler(self, websocket: ServerConnection) -> None:
        """Handle a single WebSocket connection."""
        if len(self._connections) >= self._max_connections:
            err = make_error("max_connections", "Server at connection limit.")
            await websocket.send(err.to_json())
            await websocket.close()
            return

        if self._auth_token and not await self._authenticate(websocket):
            return

        view = ConversationView.create(
            user_id=self._user_id_for(websocket),
            history_size=self._history_size,
        )
        self._connections[websocket] = view
        log.info("gateway.client_connected", view_id=view.id, user_id=view.user_id)
        await websocket.send(make_session_created(view.id, view.user_id).to_json())

        try:
            async for raw in websocket:
                try:
                    msg = GatewayMessage.from_json(raw)
                except ValueError as e:
                    await websocket.send(make_error("parse_error", str(e)).to_json())
                    continue
                await self._route(websocket, view, msg)
        except websockets.ConnectionClosed:
            pass
        finally:
            self._connections.pop(websocket, None)
            self._view_locks.pop(view.id, None)
            log.info("gateway.client_disconnected", view_id=view.id,
                     turns=view.turn_count)

    async def _authenticate(self, websocket: ServerConnection) -> bool:
        """First message must carry data.token equal to the configured token."""
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=_AUTH_TIMEOUT)
            token = GatewayMessage.from_json(raw).data.get("token", "")
        except (asyncio.TimeoutError, ValueError, websockets.ConnectionClosed):
            await websocket.close()
            return False
        if token != self._auth_token:
            log.warning("gateway.auth_failed")
            await websocket.send(make_error("auth_failed", "Invalid auth token.").to_json())
            await websocket.close()
            return False
        return True

    @staticmethod
    def _user_id_for(websocket: ServerConnection) -> str:
        user_id = None
        request = getattr(websocket, "request", None)
        if request is not None:
            query = parse_qs(urlsplit(request.path).query)
            user_id = (query.get("user_id") or [None])[0]
        remote = getattr(websocket, "remote_address", None)
        remote_host = remote[0] if remote else None
        return resolve_user_id(user_id, remote_host)

    # ─────────────────────────────────────────────────────────────────────────
    # Message router
    # ─────────────────────────────────────────────────────────────────────────

    async def _route(
        self, ws: ServerConnection, view: ConversationView, msg: GatewayMessage
    ) -> None:
        """Route an incoming message to the appropriate handler."""
        mtype = msg.type

        if mtype == MessageType.PING.value:
            await ws.send(make_pong().to_json())

        elif mtype == MessageType.ASK.value:
            await self._handle_ask(ws, view, msg)

        elif mtype == MessageType.CONFIRM.value:
            await self._handle_confirm(ws, view, msg)

        elif mtype == MessageType.CANCEL.value:
            await self._handle_cancel(ws, view, msg)

        elif mtype == MessageType.SESSION_STATUS.value:
            await self._handle_status(ws, view, msg)

        else:
            err = make_error("unknown_type", f"Unknown message type: {mtype}",
                             reply_to=msg.id)
            await ws.send(err.to_json())

    def _lock_for(self, view: ConversationView) -> asyncio.Lock:
        return self._view_locks.setdefault(view.id, asyncio.Lock())

    # ─────────────────────────────────────────────────────────────────────────
    # Ask / Confirm / Cancel
    # ─────────────────────────────────────────────────────────────────────────

    async def _handle_ask(
        self, ws: ServerConnection, view: ConversationView, msg: GatewayMessage
    ) -> None:
        debug = bool(msg.data.get("debug", False))
        was_awaiting = view.is_awaiting
        async with self._lock_for(view):
            try:
                resp = await self._orchestrator.submit(view, msg.data.get("message"))
            except PromptValidationError as e:
                err = make_error("invalid_prompt", str(e), reply_to=msg.id)
                await ws.send(err.to_json())
                return
        await self._send_response(ws, resp, msg, include_raw=debug)
        if was_awaiting and not view.is_awaiting:
            await self._send_state(ws, view)

    async def _handle_confirm(
        self, ws: ServerConnection, view: ConversationView, msg: GatewayMessage
    ) -> None:
        async with self._lock_for(view):
            resp = await self._orchestrator.confirm(view)
        await self._send_response(ws, resp, msg,
                                  include_raw=bool(msg.data.get("debug", False)))
        await self._send_state(ws, view)

    async def _handle_cancel(
        self, ws: ServerConnection, view: ConversationView, msg: GatewayMessage
    ) -> None:
        async with self._lock_for(view):
            resp = self._orchestrator.cancel(view)
        await self._send_response(ws, resp, msg)
        await self._send_state(ws, view)

    async def _handle_status(
        self, ws: ServerConnection, view: ConversationView, msg: GatewayMessage
    ) -> None:
        resp = await self._orchestrator.status(view)
        await self._send_response(ws, resp, msg, extra_status=True)

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    async def _send_response(
        self,
        ws: ServerConnection,
        resp: AgentResponse,
        msg: GatewayMessage,
        *,
        include_raw: bool = False,
        extra_status: bool = False,
    ) -> None:
        out = from_agent_response(resp, reply_to=msg.id, include_raw=include_raw)
        if extra_status:
            out.data.update(resp.metadata)
        await ws.send(out.to_json())

    async def _send_state(self, ws: ServerConnection, view: ConversationView) -> None:
        upd = make_session_updated(None, view_id=view.id, state=view.state.value)
        await ws.send(upd.to_json())
