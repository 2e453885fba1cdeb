"""Connected-client registry for real-time delivery.

The registry is an ordinary object owned by one ``NotificationService``;
there is no module-level client map. It only knows the connections opened
against this process: a user connected to another instance is invisible
here and their notifications wait for the retry sweep.
"""

import threading
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class Connection(Protocol):
    """A live, per-user push channel."""

    connection_id: str

    def push(self, message: dict, timeout: float) -> bool:
        """Send ``message`` and wait up to ``timeout`` seconds for its acknowledgement.

        Returns True only when the client acknowledged the message.
        """
        ...


class ConnectionRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: dict[str, dict[str, Connection]] = {}

    def register(self, user_id, connection: Connection) -> None:
        with self._lock:
            self._connections.setdefault(str(user_id), {})[connection.connection_id] = connection
        logger.info("Client connected", user_id=str(user_id), connection_id=connection.connection_id)

    def unregister(self, user_id, connection: Connection) -> None:
        with self._lock:
            user_connections = self._connections.get(str(user_id), {})
            user_connections.pop(connection.connection_id, None)
            if not user_connections:
                self._connections.pop(str(user_id), None)
        logger.info("Client disconnected", user_id=str(user_id), connection_id=connection.connection_id)

    def connections_for(self, user_id) -> list[Connection]:
        with self._lock:
            return list(self._connections.get(str(user_id), {}).values())

    def is_connected(self, user_id) -> bool:
        with self._lock:
            return bool(self._connections.get(str(user_id)))

    def connected_users(self) -> list[str]:
        with self._lock:
            return list(self._connections)
