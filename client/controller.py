"""
Client packet and UI event router.

Custom packets are decoded exactly once here and dispatched by model type;
UI events are split between the login flow and character select by key
prefix.

Usage:
    client = build_client(get_settings(), ui, engine, storage, bus)
    client.auth.on_login_needed()
    client.on_custom_packet(raw_json)
    client.on_ui_event("open-login")
"""

import logging
from typing import Any, MutableMapping

from client.auth_service import AuthService
from client.bridges import EngineBridge, FileAuthDataStore, UIBridge
from client.broker_client import BrokerClient
from client.character_select import EVENT_PREFIX, CharacterSelectService
from client.retry_policy import PollPolicy
from client.watchdog import ReconnectionWatchdog
from config.settings import AppSettings
from core.async_utils import LoopScheduler
from core.errors import MalformedPayloadError
from core.events import EventBus
from schemas.packets import CharacterError, CharacterList, LoginFailed, decode_packet

logger = logging.getLogger(__name__)


class AuthClient:
    """Composes the login flow and character select behind one entry point."""

    def __init__(self, auth: AuthService, characters: CharacterSelectService):
        self.auth = auth
        self.characters = characters

    def on_custom_packet(self, raw: str) -> None:
        try:
            packet = decode_packet(raw)
        except MalformedPayloadError as e:
            logger.error(f"Dropping custom packet: {e}")
            return

        if packet is None:
            logger.debug("Custom packet not for the login flow, ignored")
            return

        if isinstance(packet, LoginFailed):
            self.auth.on_server_notice(packet.reason)
        elif isinstance(packet, CharacterList):
            self.auth.on_character_list()
            self.characters.on_character_list(packet)
        elif isinstance(packet, CharacterError):
            self.characters.on_character_error(packet)
        else:
            logger.debug(f"Ignoring outbound-only packet {packet.packet_type.value}")

    def on_ui_event(self, key: str, payload: Any = None) -> None:
        if isinstance(key, str) and key.startswith(EVENT_PREFIX):
            self.characters.on_ui_event(key, payload)
        else:
            self.auth.on_ui_event(key, payload)


def build_client(
    settings: AppSettings,
    ui: UIBridge,
    engine: EngineBridge,
    storage: MutableMapping[str, Any],
    bus: EventBus,
) -> AuthClient:
    """Wire the client from settings."""
    broker = BrokerClient(
        settings.broker_url,
        api_prefix=settings.broker.api_prefix,
        timeout=settings.broker.request_timeout,
    )
    auth = AuthService(
        ui,
        engine,
        FileAuthDataStore(settings.client.auth_data_path),
        storage,
        bus,
        LoopScheduler(),
        broker,
        settings=settings.client,
        watchdog=ReconnectionWatchdog(settings.client.login_deadline_seconds),
        policy=PollPolicy(settings.client.poll_min_delay, settings.client.poll_max_delay),
    )
    logger.info(f"Login client ready, broker at {settings.broker_url}")
    return AuthClient(auth, CharacterSelectService(ui, engine))
