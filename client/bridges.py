"""
Narrow interfaces to the game client collaborators.

The login flow never touches the web view or the game transport directly;
the plugin host implements these protocols and hands them to AuthService.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from schemas.identity import RemoteIdentity

logger = logging.getLogger(__name__)


class UIBridge(Protocol):
    """Embedded web-view login UI."""

    def push_state(self, state: dict) -> None:
        ...

    def set_visible(self, visible: bool) -> None:
        ...

    def set_focused(self, focused: bool) -> None:
        ...

    def load_url(self, url: str) -> None:
        ...

    def open_external(self, url: str) -> None:
        """Open a URL in the system browser (OAuth page, static links)."""
        ...

    def notify(self, name: str) -> None:
        """Fire a named UI event, e.g. 'back-to-login' or 'auth-completed'."""
        ...

    def push_characters(self, payload: dict) -> None:
        ...

    def push_character_error(self, message: str) -> None:
        ...


class EngineBridge(Protocol):
    """Game connection and player controls."""

    def send_reliable(self, payload: str) -> None:
        ...

    def close(self) -> None:
        ...

    def reconnect(self) -> None:
        ...

    def disable_player_controls(self) -> None:
        ...


class AuthDataStore(Protocol):
    """Source of the launcher-written remote identity."""

    def read(self) -> Optional[RemoteIdentity]:
        ...


class FileAuthDataStore:
    """
    Reads the launcher's auth-data plugin file.

    The file is a JavaScript plugin whose first two characters are a comment
    marker (``//``) followed by the identity JSON. The launcher owns writes;
    the client only reads.
    """

    PREFIX_LENGTH = 2

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[RemoteIdentity]:
        logger.debug(f"Reading auth data from {self.path}")
        try:
            data = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"No auth data at {self.path}")
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error reading auth data from {self.path}: {e}")
            return None

        body = data[self.PREFIX_LENGTH:].strip()
        if not body:
            logger.debug("Auth data file is empty")
            return None

        try:
            content = json.loads(body)
        except json.JSONDecodeError as e:
            logger.error(f"Auth data at {self.path} is not valid JSON: {e}")
            return None

        if not content:
            return None

        try:
            return RemoteIdentity.model_validate(content)
        except ValidationError as e:
            logger.error(f"Auth data at {self.path} is not a valid identity: {e.error_count()} errors")
            return None
