"""
Narrow interface to the game server's connection table.
"""

from typing import Optional, Protocol


class ServerBridge(Protocol):
    """What the login gatekeeper needs from the game server."""

    def send_custom_packet(self, connection_id: int, payload: str) -> None:
        ...

    def set_enabled(self, connection_id: int, enabled: bool) -> None:
        ...

    def get_session_guid(self, connection_id: int) -> Optional[str]:
        """Changes whenever a different client takes the connection slot."""
        ...

    def is_connected(self, connection_id: int) -> bool:
        ...

    def get_ip(self, connection_id: int) -> str:
        ...
