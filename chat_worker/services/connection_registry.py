"""Registry of live connections and their sessions."""

from typing import Callable, Dict, List, Optional

from ..utils.logger import get_app_logger
from .session_controller import EventSender, SessionController


SessionFactory = Callable[[str, EventSender], SessionController]


class ConnectionRegistry:
    """
    Maps connection ids to their SessionController.

    Only connect/disconnect mutate the table; a session is torn down exactly
    once, when it is removed.
    """

    def __init__(self, session_factory: SessionFactory):
        """
        Initialize the registry.

        Args:
            session_factory: Builds the SessionController for a connection id and its event sender
        """
        self.session_factory = session_factory
        self._sessions: Dict[str, SessionController] = {}
        self.logger = get_app_logger()

    def connect(self, connection_id: str, send: EventSender) -> SessionController:
        """
        Register a new connection.

        Raises:
            ValueError: If the connection id is already registered
        """
        if connection_id in self._sessions:
            raise ValueError(f"Connection already registered: {connection_id}")

        session = self.session_factory(connection_id, send)
        self._sessions[connection_id] = session
        self.logger.info(f"[Registry] client connected: {connection_id} ({len(self._sessions)} active)")
        return session

    def get(self, connection_id: str) -> Optional[SessionController]:
        return self._sessions.get(connection_id)

    async def disconnect(self, connection_id: str) -> bool:
        """
        Remove a connection and tear its session down.

        Returns:
            True if the connection was registered, False otherwise
        """
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return False

        try:
            await session.teardown()
        finally:
            self.logger.info(f"[Registry] client disconnected: {connection_id} ({len(self._sessions)} active)")
        return True

    def connection_ids(self) -> List[str]:
        return list(self._sessions)

    async def shutdown(self) -> None:
        """Disconnect every session."""
        for connection_id in self.connection_ids():
            await self.disconnect(connection_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions
