"""
Login gatekeeper.

Handles ``loginWithProvider`` packets: re-validates the Discord access token,
applies the ban list and the whitelist role, resolves the stable profile id
and publishes exactly one verdict per attempt. Spawn and character logic
subscribe to LoginSucceeded and trust nothing else.

Every await is followed by a stale check: if the connection slot was
dropped or taken by another client (different session guid), or a newer
attempt replaced this one, the attempt is discarded without touching the
connection.

Usage:
    gatekeeper = LoginGatekeeper(server, DiscordTokenValidator(settings.discord),
                                 IdentityStore(settings.server.profiles_path),
                                 bus, settings.discord,
                                 offline_mode=settings.server.offline_mode)
    task = gatekeeper.on_custom_packet(connection_id, raw_json)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from config.settings import DiscordSettings
from core.async_utils import spawn
from core.errors import (
    AuthError,
    DenialReason,
    MalformedPayloadError,
    MemberNotFoundError,
    PolicyDenied,
    ProviderUnavailableError,
    StaleAttemptError,
)
from core.events import EventBus, LoginDenied, LoginSucceeded
from schemas.packets import LoginFailed, LoginWithProvider, decode_packet, encode_packet
from schemas.provider import ProviderUser
from server.bridges import ServerBridge
from server.identity_store import IdentityStore

logger = logging.getLogger(__name__)


class TokenValidator(Protocol):
    async def validate(self, access_token: str) -> ProviderUser:
        ...

    async def fetch_member_roles(self, user_id: str) -> list[str]:
        ...


class Verdict(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    DENIED = "denied"


@dataclass
class LoginAttempt:
    """One login attempt for one connection slot."""
    connection_id: int
    access_token: str
    session_guid: Optional[str]
    resolved_profile_id: Optional[int] = None
    resolved_roles: list[str] = field(default_factory=list)
    provider_user_id: Optional[str] = None
    verdict: Verdict = Verdict.PENDING
    denial_reason: Optional[DenialReason] = None


class LoginGatekeeper:

    def __init__(
        self,
        server: ServerBridge,
        validator: TokenValidator,
        store: IdentityStore,
        bus: EventBus,
        discord: DiscordSettings,
        offline_mode: bool = False,
    ):
        self.server = server
        self.validator = validator
        self.store = store
        self.bus = bus
        self.discord = discord
        self.offline_mode = offline_mode
        self.banned = frozenset(discord.banned_user_ids)

        self._attempts: dict[int, LoginAttempt] = {}
        self._sessions: dict[int, str] = {}

    # =========================================================================
    # Entry points
    # =========================================================================

    def on_custom_packet(self, connection_id: int, raw: str) -> Optional[asyncio.Task]:
        """Decode a custom packet; returns the validation task for login packets."""
        try:
            packet = decode_packet(raw)
        except MalformedPayloadError as e:
            logger.warning(f"Dropping custom packet from {connection_id}: {e}",
                           extra={'connection_id': connection_id})
            return None

        if not isinstance(packet, LoginWithProvider):
            return None

        logger.info(f"Connection {connection_id} attempting Discord login from {self.server.get_ip(connection_id)}",
                    extra={'connection_id': connection_id})
        return self.begin(connection_id, packet)

    def begin(self, connection_id: int, packet: LoginWithProvider) -> Optional[asyncio.Task]:
        token = (packet.access_token or "").strip()

        if not token and packet.profile_id is not None:
            if self.offline_mode:
                self._accept_offline(connection_id, packet.profile_id)
            else:
                logger.warning(f"Offline login refused for {connection_id}: server is online",
                               extra={'connection_id': connection_id})
                self._deny(connection_id, DenialReason.NOT_LOGGED_IN_PROVIDER)
            return None

        if not token:
            logger.info(f"No or empty accessToken from connection {connection_id}",
                        extra={'connection_id': connection_id})
            self._deny(connection_id, DenialReason.NOT_LOGGED_IN_PROVIDER)
            return None

        attempt = LoginAttempt(
            connection_id=connection_id,
            access_token=token,
            session_guid=self.server.get_session_guid(connection_id),
        )
        self._attempts[connection_id] = attempt
        return spawn(self.process(attempt))

    def on_disconnect(self, connection_id: int) -> None:
        self._attempts.pop(connection_id, None)
        self._sessions.pop(connection_id, None)

    def connections_for_provider(self, provider_user_id: str) -> list[int]:
        """Connected sessions logged in as this Discord user."""
        return [
            cid for cid, pid in self._sessions.items()
            if pid == provider_user_id and self.server.is_connected(cid)
        ]

    def revoke(self, provider_user_id: str) -> list[int]:
        """Disable every connected session of a Discord user."""
        revoked = self.connections_for_provider(provider_user_id)
        for cid in revoked:
            logger.info(f"Disabling connection {cid} of Discord user {provider_user_id}",
                        extra={'connection_id': cid, 'provider_user_id': provider_user_id})
            self.server.set_enabled(cid, False)
        return revoked

    # =========================================================================
    # Validation pipeline
    # =========================================================================

    async def process(self, attempt: LoginAttempt) -> Verdict:
        cid = attempt.connection_id
        try:
            user = await self.validator.validate(attempt.access_token)
            self._ensure_current(attempt)
            attempt.provider_user_id = user.id

            if user.id in self.banned:
                raise PolicyDenied(DenialReason.BANNED, f"Discord user {user.id} is banned")

            attempt.resolved_profile_id = await self.store.resolve_profile_id(user.id)
            self._ensure_current(attempt)

            attempt.resolved_roles = await self._fetch_roles(user.id)
            self._ensure_current(attempt)

        except StaleAttemptError as e:
            logger.info(f"Discarding stale login attempt: {e}", extra={'connection_id': cid})
            self._finish(attempt)
            return attempt.verdict

        except PolicyDenied as e:
            if self._is_stale(attempt):
                logger.info(f"Discarding denial for stale attempt on {cid}", extra={'connection_id': cid})
                self._finish(attempt)
                return attempt.verdict
            logger.info(f"Login denied for {cid}: {e}", extra={'connection_id': cid})
            attempt.verdict = Verdict.DENIED
            attempt.denial_reason = e.reason
            self._deny(cid, e.reason)
            self._finish(attempt)
            return attempt.verdict

        except (AuthError, OSError) as e:
            # Identity store unusable; not a policy verdict
            logger.error(f"Login for {cid} failed: {e}", extra={'connection_id': cid})
            if not self._is_stale(attempt):
                self.server.set_enabled(cid, False)
                self._finish(attempt)
            return attempt.verdict

        except Exception:
            logger.exception(f"Unexpected failure validating login for {cid}", extra={'connection_id': cid})
            if not self._is_stale(attempt):
                self.server.set_enabled(cid, False)
                self._finish(attempt)
            return attempt.verdict

        attempt.verdict = Verdict.SUCCESS
        self._sessions[cid] = attempt.provider_user_id
        self._finish(attempt)
        logger.info(
            f"Verified Discord user {attempt.provider_user_id}, profileId {attempt.resolved_profile_id}",
            extra={'connection_id': cid, 'provider_user_id': attempt.provider_user_id,
                   'profile_id': attempt.resolved_profile_id},
        )
        self.bus.publish(LoginSucceeded(
            connection_id=cid,
            profile_id=attempt.resolved_profile_id,
            roles=list(attempt.resolved_roles),
            provider_user_id=attempt.provider_user_id,
        ))
        return attempt.verdict

    async def _fetch_roles(self, user_id: str) -> list[str]:
        if not self.discord.guild_check_enabled:
            return []

        required = self.discord.whitelist_role_id
        try:
            roles = await self.validator.fetch_member_roles(user_id)
        except MemberNotFoundError:
            if required:
                raise
            return []
        except ProviderUnavailableError as e:
            if required:
                raise PolicyDenied(
                    DenialReason.NOT_IN_REQUIRED_GROUP,
                    f"Cannot confirm whitelist role for {user_id}: {e}",
                ) from e
            logger.warning(f"Failed to get Discord roles for {user_id}: {e}",
                           extra={'provider_user_id': user_id})
            return []

        if required and required not in roles:
            raise PolicyDenied(
                DenialReason.NOT_IN_REQUIRED_GROUP,
                f"Discord user {user_id} does not have the whitelist role",
            )
        return roles

    # =========================================================================
    # Helpers
    # =========================================================================

    def _is_stale(self, attempt: LoginAttempt) -> bool:
        cid = attempt.connection_id
        return (
            self._attempts.get(cid) is not attempt
            or not self.server.is_connected(cid)
            or self.server.get_session_guid(cid) != attempt.session_guid
        )

    def _ensure_current(self, attempt: LoginAttempt) -> None:
        if self._is_stale(attempt):
            raise StaleAttemptError(f"connection {attempt.connection_id} changed during login")

    def _finish(self, attempt: LoginAttempt) -> None:
        """Drop a decided attempt; a newer attempt on the slot is left alone."""
        if self._attempts.get(attempt.connection_id) is attempt:
            del self._attempts[attempt.connection_id]

    def _deny(self, connection_id: int, reason: DenialReason) -> None:
        self.server.send_custom_packet(connection_id, encode_packet(LoginFailed.for_reason(reason)))
        self.server.set_enabled(connection_id, False)
        self.bus.publish(LoginDenied(connection_id=connection_id, reason=reason))

    def _accept_offline(self, connection_id: int, profile_id: int) -> None:
        logger.info(f"Offline login for {connection_id}, profileId {profile_id}",
                    extra={'connection_id': connection_id, 'profile_id': profile_id})
        self._attempts.pop(connection_id, None)
        self.bus.publish(LoginSucceeded(connection_id=connection_id, profile_id=profile_id))
