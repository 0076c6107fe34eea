"""
Client login state machine.

Drives the login UI from "the engine wants a login" to "the server accepted
us": waits for both the engine and the UI (TriggerGate), polls the broker
for the OAuth result (OAuthPoller), sends the identity once the player
clicks Connect, and recovers from denials and stuck logins
(ReconnectionWatchdog).

Phases:
    IDLE -> AWAITING_TRIGGERS -> POLLING -> AWAITING_USER_CONFIRM
         -> CONNECTING -> CONNECTED | DENIED | TIMED_OUT

All state lives on one AuthService instance. Engine callbacks (on_*) are
synchronous and run on the loop thread; network work runs as loop tasks.

Usage:
    service = AuthService(ui, engine, FileAuthDataStore(path), storage,
                          bus, LoopScheduler(), broker, settings.client)
    service.on_login_needed()
    service.on_ui_ready()
    ...
    service.on_tick()   # every engine tick
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, MutableMapping, Optional

from pydantic import ValidationError

from client.bridges import AuthDataStore, EngineBridge, UIBridge
from client.broker_client import BrokerClient
from client.poller import OAuthPoller
from client.retry_policy import PollPolicy
from client.trigger_gate import TriggerGate
from client.watchdog import ReconnectionWatchdog, WatchdogAction
from config.settings import ClientSettings
from core.async_utils import Scheduler
from core.errors import DenialReason, LocalMisuseError
from core.events import ConnectAttempt, EventBus
from schemas.identity import AuthGameData, AuthUIState, LocalIdentity, RemoteIdentity
from schemas.packets import LoginWithProvider, encode_packet

logger = logging.getLogger(__name__)

AUTH_GAME_DATA_KEY = "authGameData"

PLEASE_LOGIN_FIRST = "please login first"
OPENING_BROWSER = "opening browser..."
RELOGIN_REASON = "technical difficulties\nplease try again\nor contact us on discord"

NOTICE_REASONS: dict[DenialReason, str] = {
    DenialReason.NOT_LOGGED_IN_PROVIDER: "please login via discord",
    DenialReason.NOT_IN_REQUIRED_GROUP: "please join the discord server",
    DenialReason.BANNED: "you are banned",
    DenialReason.IP_MISMATCH: "ip address mismatch, please log in again",
}

CREDENTIAL_DENIALS = ("invalid password", "invalid credential")

# Connecting dots advance every this many ticks
TICKS_PER_DOT = 15


class Phase(str, Enum):
    IDLE = "idle"
    AWAITING_TRIGGERS = "awaiting_triggers"
    POLLING = "polling"
    AWAITING_USER_CONFIRM = "awaiting_user_confirm"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DENIED = "denied"
    TIMED_OUT = "timed_out"


class UIEvent(str, Enum):
    """Closed set of event keys the login UI may send."""
    OPEN_LOGIN = "open-login"
    CONNECT = "connect"
    BACK_TO_LOGIN = "back-to-login"
    REQUEST_STATE = "request-state"
    HIDE = "hide"
    OPEN_GITHUB = "open-github"
    OPEN_PATREON = "open-patreon"
    JOIN_DISCORD = "join-discord"
    UPDATE_REQUIRED = "update-required"


class AuthService:
    """Owns the login UI snapshot, the trigger flags and the identity."""

    def __init__(
        self,
        ui: UIBridge,
        engine: EngineBridge,
        auth_data: AuthDataStore,
        storage: MutableMapping[str, Any],
        bus: EventBus,
        scheduler: Scheduler,
        broker: BrokerClient,
        settings: Optional[ClientSettings] = None,
        watchdog: Optional[ReconnectionWatchdog] = None,
        policy: Optional[PollPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ui = ui
        self.engine = engine
        self.auth_data = auth_data
        self.storage = storage
        self.bus = bus
        self.scheduler = scheduler
        self.settings = settings or ClientSettings()
        self.watchdog = watchdog or ReconnectionWatchdog(self.settings.login_deadline_seconds)
        self.clock = clock

        self.poller = OAuthPoller(
            broker,
            policy or PollPolicy(self.settings.poll_min_delay, self.settings.poll_max_delay),
            still_listening=lambda: self.listening,
            on_identity=self._on_identity,
            on_progress=self._on_poll_progress,
        )

        self.phase = Phase.IDLE
        self.listening = False
        self.gate = TriggerGate()
        self.identity: Optional[RemoteIdentity] = None
        self.status_comment = ""
        self.failure_reason = ""
        self.connecting = False
        self.fail_count = 0
        self.dialog_open = False

        self._next_tick: list[Callable[[], None]] = []
        self._progress_counter = 0
        self._last_dot_step = -1

    # =========================================================================
    # Snapshot
    # =========================================================================

    def snapshot(self) -> AuthUIState:
        return AuthUIState(
            identity=self.identity,
            status_comment=self.status_comment,
            failure_reason=self.failure_reason,
            connecting=self.connecting,
        )

    def push_state(self) -> None:
        """Send the current snapshot to the UI. Best effort."""
        self._ui_call(self.ui.push_state, self.snapshot().to_dict())
        self.dialog_open = True

    def _ui_call(self, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception(f"UI call {getattr(fn, '__name__', fn)} failed")

    def _show_ui(self) -> None:
        self._ui_call(self.ui.set_visible, True)
        self._ui_call(self.ui.set_focused, True)

    def _set_listening(self, value: bool, reason: str) -> None:
        logger.debug(f"listening={value} ({reason})")
        self.listening = value

    def _enter(self, phase: Phase) -> None:
        if phase != self.phase:
            logger.debug(f"Auth phase {self.phase.value} -> {phase.value}", extra={'phase': phase.value})
        self.phase = phase

    def _reset_progress(self) -> None:
        self.connecting = False
        self._progress_counter = 0
        self._last_dot_step = -1

    # =========================================================================
    # Engine callbacks
    # =========================================================================

    def on_login_needed(self) -> None:
        """Engine asks for a login. Offline identity skips the UI entirely."""
        logger.debug("Login needed")
        self._set_listening(True, "login needed")

        self.identity = self.auth_data.read()

        if self.identity is None and self.settings.has_offline_identity:
            logger.info(f"No auth file, using offline profile {self.settings.offline_profile_id}")
            data = AuthGameData(local=LocalIdentity(
                access_token=self.settings.offline_access_token,
                profile_id=self.settings.offline_profile_id,
            ))
            self.storage[AUTH_GAME_DATA_KEY] = data
            self.bus.publish(ConnectAttempt(auth_data=data))
            self._enter(Phase.CONNECTING)
            return

        if self.identity is not None:
            logger.debug("Auth file found, showing login menu with existing identity")
        else:
            logger.debug("No auth file and no offline settings, showing login menu")

        self._show_ui()
        try:
            self.ui.load_url(self.settings.ui_url)
        except Exception:
            logger.exception(f"Failed to load UI from {self.settings.ui_url}")

        self.gate.login_needed = True
        self._enter(Phase.AWAITING_TRIGGERS)
        self._try_start_polling()

    def on_ui_ready(self) -> None:
        logger.debug("UI ready")
        self.gate.ui_ready = True
        self._try_start_polling()

    def _try_start_polling(self) -> bool:
        if not self.listening:
            logger.error("UI ready but not listening for UI events, login aborted")
            return False

        if not self.gate.try_fire():
            logger.debug("Waiting for both login triggers")
            return False

        self._enter(Phase.POLLING)

        if self.identity is None:
            self.identity = self.auth_data.read()

        self.scheduler.call_later(self.settings.ui_mount_delay, self._initial_push)
        self.poller.start()
        return True

    def _initial_push(self) -> None:
        logger.debug("Sending initial auth state to UI")
        self._show_ui()
        self.push_state()

    def on_user_connect_intent(self) -> None:
        if self.identity is None:
            logger.error("Connect clicked without an identity")
            self.status_comment = PLEASE_LOGIN_FIRST
            self.push_state()
            return

        data = AuthGameData(remote=self.identity)
        self.storage[AUTH_GAME_DATA_KEY] = data
        self.bus.publish(ConnectAttempt(auth_data=data))
        self._reset_progress()
        self.connecting = True
        self._enter(Phase.CONNECTING)

    def on_connection_accepted(self) -> None:
        self.watchdog.arm(self.clock())

        try:
            packet = self._login_packet(self.storage.get(AUTH_GAME_DATA_KEY))
        except LocalMisuseError as e:
            logger.error(f"{e}, login packet not sent")
            return

        self.engine.send_reliable(encode_packet(packet))

    def _login_packet(self, data: Any) -> LoginWithProvider:
        if isinstance(data, dict):
            try:
                data = AuthGameData.model_validate(data)
            except ValidationError as e:
                raise LocalMisuseError(f"Stored auth data is invalid: {e.error_count()} errors") from e

        if isinstance(data, AuthGameData) and data.local is not None:
            logger.info(f"Logging in offline, profile {data.local.profile_id}",
                        extra={'profile_id': data.local.profile_id})
            return LoginWithProvider(profile_id=data.local.profile_id)
        if isinstance(data, AuthGameData) and data.remote is not None:
            logger.info("Logging in with Discord access token")
            return LoginWithProvider(access_token=data.remote.access_token or "")
        raise LocalMisuseError("No authentication method found")

    def on_connection_denied(self, reason: str) -> None:
        self.connecting = False

        lowered = reason.lower()
        matched = next((phrase for phrase in CREDENTIAL_DENIALS if phrase in lowered), None)
        if matched is None:
            logger.info(f"Connection denied: {reason}")
            return

        logger.warning(f"Connection denied: {reason}")
        self._on_next_tick(self.engine.close)
        self.failure_reason = matched
        self.push_state()
        self._show_ui()
        self._on_next_tick(self.engine.disable_player_controls)
        self._set_listening(True, "connection denied")
        self._enter(Phase.DENIED)

    def on_server_notice(self, reason: DenialReason) -> None:
        """A loginFailed* packet arrived: the server refused this login."""
        logger.info(f"Login refused by server: {reason.value}")
        self.engine.close()
        self._reset_progress()
        self.status_comment = ""
        self.failure_reason = NOTICE_REASONS[reason]
        self.watchdog.disarm()
        self._set_listening(True, f"{reason.value} received")
        self._enter(Phase.DENIED)
        self.push_state()
        self._show_ui()

    def on_character_list(self) -> None:
        """Server sent the character list: the login went through."""
        self._reset_progress()
        self.status_comment = ""
        self.watchdog.disarm()
        self._enter(Phase.CONNECTED)

    def on_actor_created(self, is_me: bool) -> None:
        if is_me:
            if self.dialog_open:
                logger.debug("Own actor created, hiding auth UI")
                self._ui_call(self.ui.notify, "auth-completed")
                self.dialog_open = False
            self._enter(Phase.CONNECTED)

        self.watchdog.disarm()
        self._reset_progress()

    def on_first_update(self) -> None:
        self.watchdog.mark_gameplay_observed()

    def on_tick(self) -> None:
        callbacks, self._next_tick = self._next_tick, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Deferred callback failed")

        self._apply_watchdog(self.watchdog.check(self.clock()))

        if self.connecting:
            self._animate_connecting()

    def _on_next_tick(self, callback: Callable[[], None]) -> None:
        self._next_tick.append(callback)

    def _apply_watchdog(self, action: WatchdogAction) -> None:
        if action == WatchdogAction.RECONNECT:
            self.engine.reconnect()
        elif action == WatchdogAction.RELOGIN:
            self.engine.close()
            self.identity = None
            self._reset_progress()
            self.status_comment = ""
            self.failure_reason = RELOGIN_REASON
            self._enter(Phase.TIMED_OUT)
            self.push_state()

    def _animate_connecting(self) -> None:
        self._progress_counter = (self._progress_counter + 1) % 1_000_000
        step = self._progress_counter // TICKS_PER_DOT
        if step == self._last_dot_step:
            return
        self._last_dot_step = step
        self.status_comment = "connecting" + "." * (step % 3 + 1)
        self.push_state()

    # =========================================================================
    # Poller callbacks
    # =========================================================================

    def _on_identity(self, identity: RemoteIdentity) -> None:
        self.identity = identity
        self._enter(Phase.AWAITING_USER_CONFIRM)

    def _on_poll_progress(self, comment: str, fail_count: int) -> None:
        self.status_comment = comment
        self.fail_count = fail_count
        self.push_state()

    # =========================================================================
    # UI events
    # =========================================================================

    def on_ui_event(self, key: str, payload: Any = None) -> None:
        if not self.listening:
            logger.debug(f"Not listening, ignoring UI event {key!r}")
            return

        try:
            event = UIEvent(key)
        except ValueError:
            logger.error(f"Unknown UI event key {key!r}")
            return

        logger.debug(f"UI event {event.value}")
        handlers = {
            UIEvent.OPEN_LOGIN: self._open_login,
            UIEvent.CONNECT: self.on_user_connect_intent,
            UIEvent.BACK_TO_LOGIN: self._back_to_login,
            UIEvent.REQUEST_STATE: self.push_state,
            UIEvent.HIDE: self._hide,
            UIEvent.OPEN_GITHUB: lambda: self._open_external(self.settings.github_url),
            UIEvent.OPEN_PATREON: lambda: self._open_external(self.settings.patreon_url),
            UIEvent.JOIN_DISCORD: lambda: self._open_external(self.settings.discord_invite_url),
            UIEvent.UPDATE_REQUIRED: lambda: self._open_external(self.settings.update_url),
        }
        handlers[event]()

    def _open_login(self) -> None:
        self.status_comment = OPENING_BROWSER
        self.push_state()
        url = self.poller.login_page_url()
        logger.info(f"Opening Discord OAuth page (state {self.poller.state_prefix}...)")
        self._open_external(url)
        self.poller.start()

    def _back_to_login(self) -> None:
        self._reset_progress()
        self.failure_reason = ""
        self.status_comment = ""
        self.watchdog.disarm()
        self.gate.rearm()
        self._enter(Phase.AWAITING_TRIGGERS)
        self._try_start_polling()
        self.push_state()
        self._ui_call(self.ui.notify, "back-to-login")

    def _hide(self) -> None:
        self._ui_call(self.ui.set_visible, False)
        self._ui_call(self.ui.set_focused, False)

    def _open_external(self, url: str) -> None:
        self._ui_call(self.ui.open_external, url)
