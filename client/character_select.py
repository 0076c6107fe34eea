"""
Character selection after login.

The server sends the character list once the login verdict is positive;
this service shows it and turns the player's choices into packets.
"""

import logging
from typing import Any, Callable, Optional

from client.bridges import EngineBridge, UIBridge
from schemas.packets import (
    CharacterCommand,
    CharacterError,
    CharacterList,
    CustomPacketType,
    encode_packet,
)

logger = logging.getLogger(__name__)

EVENT_PREFIX = "characterSelect_"

SELECT = "characterSelect_select"
CREATE = "characterSelect_create"
DELETE = "characterSelect_delete"
RETRY = "characterSelect_retry"


def _visible_id(payload: Any) -> Optional[int]:
    if isinstance(payload, bool) or not isinstance(payload, int):
        return None
    return payload


class CharacterSelectService:

    def __init__(self, ui: UIBridge, engine: EngineBridge):
        self.ui = ui
        self.engine = engine

    def on_character_list(self, packet: CharacterList) -> None:
        logger.debug(
            f"Received character list: {len(packet.characters)} characters, "
            f"{packet.max_slots} max slots"
        )
        self._ui_call(self.ui.push_characters, packet.model_dump(by_alias=True, mode="json"))
        self._ui_call(self.ui.set_visible, True)
        self._ui_call(self.ui.set_focused, True)

    def on_character_error(self, packet: CharacterError) -> None:
        logger.error(f"Character error: {packet.message}")
        self._ui_call(self.ui.push_character_error, packet.message)

    def on_ui_event(self, key: str, payload: Any = None) -> bool:
        """Handle a characterSelect_* event. Returns False for unknown keys."""
        if key == SELECT:
            self._send_with_id(CustomPacketType.SELECT_CHARACTER, payload)
        elif key == CREATE:
            logger.debug("Creating new character")
            self._send(CharacterCommand(packet_type=CustomPacketType.CREATE_CHARACTER))
        elif key == DELETE:
            self._send_with_id(CustomPacketType.DELETE_CHARACTER, payload)
        elif key == RETRY:
            self._send(CharacterCommand(packet_type=CustomPacketType.REQUEST_CHARACTER_LIST))
        else:
            logger.error(f"Unknown character select event {key!r}")
            return False
        return True

    def _send_with_id(self, packet_type: CustomPacketType, payload: Any) -> None:
        visible_id = _visible_id(payload)
        if visible_id is None:
            logger.warning(f"{packet_type.value}: visibleId {payload!r} is not an integer, ignored")
            return
        logger.debug(f"{packet_type.value} visibleId={visible_id}")
        self._send(CharacterCommand(packet_type=packet_type, visible_id=visible_id))

    def _ui_call(self, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception(f"UI call {getattr(fn, '__name__', fn)} failed")

    def _send(self, packet: CharacterCommand) -> None:
        self.engine.send_reliable(encode_packet(packet))
