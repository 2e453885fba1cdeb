"""WebSocket transport for real-time notification delivery.

Protocol (JSON text frames):

    client -> {"type": "authenticate", "token": "..."}
    server -> {"type": "authenticated", "user_id": "...", "connection_id": "..."}
    server -> {"type": "notification", "id": "...", "notification": {...}}
    client -> {"type": "ack", "id": "..."}
    client -> {"type": "ping"}            server -> {"type": "pong"}

The first frame must authenticate; anything else closes the socket with
policy-violation code 1008. Once authenticated the socket is registered as
one of the user's live connections until it disconnects.
"""

import asyncio
import concurrent.futures
import threading
from collections.abc import Callable
from uuid import uuid4

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["realtime"])

AUTH_TIMEOUT_SECONDS = 10.0
POLICY_VIOLATION = 1008


def token_as_user_id(token) -> str | None:
    """Default resolver: the auth layer in front of us hands over the user id as the token."""
    return str(token) if token else None


class WebSocketConnection:
    """A ``Connection`` backed by one accepted WebSocket.

    ``push`` is called from worker threads; it schedules the send on the
    socket's event loop and blocks until the client acknowledges the
    message or the timeout passes.
    """

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop):
        self.connection_id = uuid4().hex
        self.websocket = websocket
        self.loop = loop
        self._loop_thread = threading.get_ident()
        self._pending: dict[str, asyncio.Future] = {}
        self._closed = False

    def push(self, message: dict, timeout: float) -> bool:
        if self._closed:
            return False
        if threading.get_ident() == self._loop_thread:
            # Blocking here would stall the loop that has to receive the ack
            logger.warning("Push from the event loop thread skipped", connection_id=self.connection_id)
            return False

        future = asyncio.run_coroutine_threadsafe(self._send_and_wait(message, timeout), self.loop)
        try:
            return future.result(timeout + 1)
        except concurrent.futures.TimeoutError:
            future.cancel()
            return False

    async def _send_and_wait(self, message: dict, timeout: float) -> bool:
        message_id = str(message.get("id"))
        ack = self.loop.create_future()
        self._pending[message_id] = ack
        try:
            await self.websocket.send_json(message)
            await asyncio.wait_for(ack, timeout)
            return True
        except TimeoutError:
            return False
        finally:
            self._pending.pop(message_id, None)

    def acknowledge(self, message_id) -> bool:
        ack = self._pending.get(str(message_id))
        if ack is None or ack.done():
            return False
        ack.set_result(True)
        return True

    def close(self) -> None:
        self._closed = True
        for ack in self._pending.values():
            if not ack.done():
                ack.cancel()
        self._pending.clear()


async def _authenticate(websocket: WebSocket, resolve: Callable[[str], str | None]) -> str | None:
    try:
        frame = await asyncio.wait_for(websocket.receive_json(), AUTH_TIMEOUT_SECONDS)
    except (TimeoutError, ValueError):
        return None
    if not isinstance(frame, dict) or frame.get("type") != "authenticate":
        return None
    return resolve(frame.get("token"))


@router.websocket("/realtime")
async def realtime(websocket: WebSocket):
    services = websocket.app.state.services
    resolve = getattr(websocket.app.state, "token_resolver", None) or token_as_user_id

    await websocket.accept()
    try:
        user_id = await _authenticate(websocket, resolve)
    except WebSocketDisconnect:
        return
    if not user_id:
        await websocket.send_json({"type": "error", "message": "Authentication required"})
        await websocket.close(code=POLICY_VIOLATION)
        return

    connection = WebSocketConnection(websocket, asyncio.get_running_loop())
    services.connections.register(user_id, connection)
    try:
        await websocket.send_json(
            {"type": "authenticated", "user_id": user_id, "connection_id": connection.connection_id}
        )
        while True:
            frame = await websocket.receive_json()
            kind = frame.get("type") if isinstance(frame, dict) else None
            if kind == "ack":
                connection.acknowledge(frame.get("id"))
            elif kind == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                logger.debug("Ignored realtime frame", user_id=user_id, frame_type=kind)
    except WebSocketDisconnect:
        pass
    finally:
        connection.close()
        services.connections.unregister(user_id, connection)
