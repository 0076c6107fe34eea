"""Tests for the server-side login gatekeeper."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.settings import DiscordSettings
from core.errors import (
    DenialReason,
    MemberNotFoundError,
    ProviderUnavailableError,
    TokenValidationError,
)
from core.events import EventBus, LoginDenied, LoginSucceeded
from schemas.provider import ProviderUser
from server.gatekeeper import LoginGatekeeper, Verdict
from server.identity_store import IdentityStore


def login_packet(**fields) -> str:
    return json.dumps({"customPacketType": "loginWithProvider", **fields})


def packet_types(server) -> list[str]:
    return [json.loads(payload)["customPacketType"] for _, payload in server.sent]


@pytest.fixture
def validator():
    validator = MagicMock()
    validator.validate = AsyncMock(return_value=ProviderUser(id="42", username="player"))
    validator.fetch_member_roles = AsyncMock(return_value=["member"])
    return validator


@pytest.fixture
def store(tmp_path):
    return IdentityStore(tmp_path / "profiles.json")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def verdicts(bus):
    seen = []
    bus.subscribe(LoginSucceeded, seen.append)
    bus.subscribe(LoginDenied, seen.append)
    return seen


def make_gatekeeper(fake_server, validator, store, bus, offline_mode=False, **discord):
    return LoginGatekeeper(
        fake_server, validator, store, bus, DiscordSettings(**discord), offline_mode=offline_mode,
    )


@pytest.fixture
def gatekeeper(fake_server, validator, store, bus):
    return make_gatekeeper(fake_server, validator, store, bus)


# ---------------------------------------------------------------------------
# Packet boundary
# ---------------------------------------------------------------------------

class TestPacketBoundary:
    def test_malformed_json_dropped(self, gatekeeper, fake_server, verdicts):
        fake_server.connect(1, "g1")
        assert gatekeeper.on_custom_packet(1, "{oops") is None
        assert fake_server.sent == []
        assert verdicts == []

    def test_other_packet_types_ignored(self, gatekeeper, fake_server, validator):
        fake_server.connect(1, "g1")
        assert gatekeeper.on_custom_packet(1, json.dumps({"customPacketType": "selectCharacter", "visibleId": 1})) is None
        assert gatekeeper.on_custom_packet(1, json.dumps({"customPacketType": "somethingElse"})) is None
        validator.validate.assert_not_awaited()

    @pytest.mark.parametrize("fields", [{}, {"accessToken": ""}, {"accessToken": "   "}])
    def test_empty_access_token_denied_without_provider_call(
        self, gatekeeper, fake_server, validator, verdicts, fields,
    ):
        fake_server.connect(1, "g1")
        assert gatekeeper.on_custom_packet(1, login_packet(**fields)) is None

        assert packet_types(fake_server) == ["loginFailedNotLoggedViaDiscord"]
        assert fake_server.enabled[1] is False
        validator.validate.assert_not_awaited()
        assert verdicts == [LoginDenied(connection_id=1, reason=DenialReason.NOT_LOGGED_IN_PROVIDER)]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class TestPipeline:
    @pytest.mark.asyncio
    async def test_success_emits_single_verdict(self, gatekeeper, fake_server, validator, verdicts):
        fake_server.connect(1, "g1")
        task = gatekeeper.on_custom_packet(1, login_packet(accessToken=" tok "))
        assert await task == Verdict.SUCCESS

        validator.validate.assert_awaited_once_with("tok")
        assert verdicts == [LoginSucceeded(connection_id=1, profile_id=1, roles=[], provider_user_id="42")]
        assert fake_server.sent == []
        assert fake_server.enabled[1] is True

    @pytest.mark.asyncio
    async def test_invalid_token_denied(self, gatekeeper, fake_server, validator, verdicts, store):
        validator.validate.side_effect = TokenValidationError("Discord returned 401")
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="bad")) == Verdict.DENIED

        assert packet_types(fake_server) == ["loginFailedNotLoggedViaDiscord"]
        assert fake_server.enabled[1] is False
        assert await store.lookup("42") is None
        assert verdicts == [LoginDenied(connection_id=1, reason=DenialReason.NOT_LOGGED_IN_PROVIDER)]

    @pytest.mark.asyncio
    async def test_banned_user_denied(self, fake_server, validator, store, bus, verdicts):
        gatekeeper = make_gatekeeper(fake_server, validator, store, bus, banned_user_ids=["42"])
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.DENIED

        assert packet_types(fake_server) == ["loginFailedBanned"]
        assert fake_server.enabled[1] is False
        assert await store.lookup("42") is None

    @pytest.mark.asyncio
    async def test_profile_persisted_before_verdict(self, gatekeeper, fake_server, bus, store):
        persisted = []

        def on_success(event):
            persisted.append(json.loads(store.path.read_text())["entries"])

        bus.subscribe(LoginSucceeded, on_success)
        fake_server.connect(1, "g1")
        await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))

        assert persisted == [{"42": 1}]

    @pytest.mark.asyncio
    async def test_same_user_keeps_profile_across_logins(self, gatekeeper, fake_server, verdicts):
        fake_server.connect(1, "g1")
        await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))
        fake_server.connect(2, "g2")
        await gatekeeper.on_custom_packet(2, login_packet(accessToken="tok2"))

        assert [v.profile_id for v in verdicts] == [1, 1]


# ---------------------------------------------------------------------------
# Guild roles and whitelist
# ---------------------------------------------------------------------------

class TestWhitelist:
    @pytest.mark.asyncio
    async def test_roles_fetched_when_guild_configured(self, fake_server, validator, store, bus, verdicts):
        gatekeeper = make_gatekeeper(fake_server, validator, store, bus, guild_id="555", bot_token="bot")
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.SUCCESS

        validator.fetch_member_roles.assert_awaited_once_with("42")
        assert verdicts[0].roles == ["member"]

    @pytest.mark.asyncio
    async def test_missing_role_denied(self, fake_server, validator, store, bus):
        gatekeeper = make_gatekeeper(
            fake_server, validator, store, bus,
            guild_id="555", bot_token="bot", whitelist_role_id="wl",
        )
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.DENIED

        assert packet_types(fake_server) == ["loginFailedNotInTheDiscordServer"]
        assert fake_server.enabled[1] is False

    @pytest.mark.asyncio
    async def test_whitelisted_member_accepted(self, fake_server, validator, store, bus, verdicts):
        validator.fetch_member_roles.return_value = ["wl", "other"]
        gatekeeper = make_gatekeeper(
            fake_server, validator, store, bus,
            guild_id="555", bot_token="bot", whitelist_role_id="wl",
        )
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.SUCCESS
        assert verdicts[0].roles == ["wl", "other"]

    @pytest.mark.asyncio
    async def test_not_a_member_denied(self, fake_server, validator, store, bus):
        validator.fetch_member_roles.side_effect = MemberNotFoundError("not in guild")
        gatekeeper = make_gatekeeper(
            fake_server, validator, store, bus,
            guild_id="555", bot_token="bot", whitelist_role_id="wl",
        )
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.DENIED
        assert packet_types(fake_server) == ["loginFailedNotInTheDiscordServer"]

    @pytest.mark.asyncio
    async def test_outage_fails_closed_with_whitelist(self, fake_server, validator, store, bus):
        validator.fetch_member_roles.side_effect = ProviderUnavailableError("down")
        gatekeeper = make_gatekeeper(
            fake_server, validator, store, bus,
            guild_id="555", bot_token="bot", whitelist_role_id="wl",
        )
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.DENIED
        assert packet_types(fake_server) == ["loginFailedNotInTheDiscordServer"]

    @pytest.mark.asyncio
    async def test_outage_without_whitelist_proceeds(self, fake_server, validator, store, bus, verdicts):
        validator.fetch_member_roles.side_effect = ProviderUnavailableError("down")
        gatekeeper = make_gatekeeper(fake_server, validator, store, bus, guild_id="555", bot_token="bot")
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.SUCCESS
        assert verdicts[0].roles == []


# ---------------------------------------------------------------------------
# Offline profile logins
# ---------------------------------------------------------------------------

class TestOfflineLogin:
    def test_profile_id_refused_when_online(self, gatekeeper, fake_server, verdicts):
        fake_server.connect(1, "g1")
        assert gatekeeper.on_custom_packet(1, login_packet(profileId=3)) is None
        assert packet_types(fake_server) == ["loginFailedNotLoggedViaDiscord"]
        assert fake_server.enabled[1] is False

    def test_profile_id_accepted_offline(self, fake_server, validator, store, bus, verdicts):
        gatekeeper = make_gatekeeper(fake_server, validator, store, bus, offline_mode=True)
        fake_server.connect(1, "g1")

        assert gatekeeper.on_custom_packet(1, login_packet(profileId=3)) is None

        assert verdicts == [LoginSucceeded(connection_id=1, profile_id=3)]
        validator.validate.assert_not_awaited()


# ---------------------------------------------------------------------------
# Races
# ---------------------------------------------------------------------------

class TestStaleAttempts:
    @pytest.mark.asyncio
    async def test_reconnect_with_new_identity_discards_verdict(
        self, gatekeeper, fake_server, validator, verdicts, store,
    ):
        release = asyncio.Event()

        async def slow_validate(token):
            await release.wait()
            return ProviderUser(id="42")

        validator.validate.side_effect = slow_validate
        fake_server.connect(1, "g1")
        task = gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))
        await asyncio.sleep(0)

        # Slot 1 is taken by a different client before validation returns
        fake_server.disconnect(1)
        gatekeeper.on_disconnect(1)
        fake_server.connect(1, "g2")

        release.set()
        assert await task == Verdict.PENDING

        assert verdicts == []
        assert fake_server.sent == []
        assert fake_server.enabled[1] is True
        assert await store.lookup("42") is None

    @pytest.mark.asyncio
    async def test_guid_change_during_role_fetch(self, fake_server, validator, store, bus, verdicts):
        async def slow_roles(user_id):
            fake_server.connect(1, "g2")
            return ["member"]

        validator.fetch_member_roles.side_effect = slow_roles
        gatekeeper = make_gatekeeper(fake_server, validator, store, bus, guild_id="555", bot_token="bot")
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.PENDING
        assert verdicts == []

    @pytest.mark.asyncio
    async def test_stale_denial_not_applied(self, gatekeeper, fake_server, validator, verdicts):
        async def failing_validate(token):
            fake_server.disconnect(1)
            raise TokenValidationError("expired")

        validator.validate.side_effect = failing_validate
        fake_server.connect(1, "g1")

        await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))

        assert fake_server.sent == []
        assert verdicts == []

    @pytest.mark.asyncio
    async def test_newer_attempt_supersedes_older(self, gatekeeper, fake_server, validator, verdicts):
        release = asyncio.Event()
        calls = 0

        async def validate(token):
            nonlocal calls
            calls += 1
            if calls == 1:
                await release.wait()
            return ProviderUser(id="42")

        validator.validate.side_effect = validate
        fake_server.connect(1, "g1")
        first = gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))
        await asyncio.sleep(0)
        second = gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))

        assert await second == Verdict.SUCCESS
        release.set()
        assert await first == Verdict.PENDING
        assert len(verdicts) == 1

    @pytest.mark.asyncio
    async def test_simultaneous_new_user_on_two_connections(self, gatekeeper, fake_server, verdicts, store):
        fake_server.connect(1, "g1")
        fake_server.connect(2, "g2")

        results = await asyncio.gather(
            gatekeeper.on_custom_packet(1, login_packet(accessToken="a")),
            gatekeeper.on_custom_packet(2, login_packet(accessToken="b")),
        )

        assert results == [Verdict.SUCCESS, Verdict.SUCCESS]
        assert sorted(v.connection_id for v in verdicts) == [1, 2]
        assert {v.profile_id for v in verdicts} == {1}
        assert json.loads(store.path.read_text()) == {"lastIndex": 1, "entries": {"42": 1}}


# ---------------------------------------------------------------------------
# Session registry
# ---------------------------------------------------------------------------

class TestSessions:
    @pytest.mark.asyncio
    async def test_connections_for_provider_and_revoke(self, gatekeeper, fake_server):
        fake_server.connect(1, "g1")
        fake_server.connect(2, "g2")
        await gatekeeper.on_custom_packet(1, login_packet(accessToken="a"))
        await gatekeeper.on_custom_packet(2, login_packet(accessToken="b"))

        assert sorted(gatekeeper.connections_for_provider("42")) == [1, 2]
        assert gatekeeper.connections_for_provider("other") == []

        assert sorted(gatekeeper.revoke("42")) == [1, 2]
        assert fake_server.enabled == {1: False, 2: False}

    @pytest.mark.asyncio
    async def test_disconnect_forgets_session(self, gatekeeper, fake_server):
        fake_server.connect(1, "g1")
        await gatekeeper.on_custom_packet(1, login_packet(accessToken="a"))
        gatekeeper.on_disconnect(1)
        assert gatekeeper.connections_for_provider("42") == []


# ---------------------------------------------------------------------------
# Store and unexpected failures
# ---------------------------------------------------------------------------

class TestFailures:
    @pytest.mark.asyncio
    async def test_undecodable_profiles_file_disables_connection(
        self, gatekeeper, fake_server, store, verdicts,
    ):
        store.path.write_bytes(b"\xff\xfe garbage")
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.PENDING

        assert fake_server.enabled[1] is False
        assert fake_server.sent == []
        assert verdicts == []
        assert store.path.read_bytes() == b"\xff\xfe garbage"

    @pytest.mark.asyncio
    async def test_unexpected_error_disables_connection(self, gatekeeper, fake_server, validator, verdicts):
        validator.validate.side_effect = RuntimeError("boom")
        fake_server.connect(1, "g1")

        assert await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok")) == Verdict.PENDING

        assert fake_server.enabled[1] is False
        assert verdicts == []
        assert gatekeeper._attempts == {}

    @pytest.mark.asyncio
    async def test_unexpected_error_on_stale_attempt_leaves_slot(self, gatekeeper, fake_server, validator):
        async def failing_validate(token):
            fake_server.connect(1, "g2")
            raise RuntimeError("boom")

        validator.validate.side_effect = failing_validate
        fake_server.connect(1, "g1")

        await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))

        assert fake_server.enabled[1] is True


class TestAttemptLifetime:
    @pytest.mark.asyncio
    async def test_attempt_dropped_after_success(self, gatekeeper, fake_server):
        fake_server.connect(1, "g1")
        await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))
        assert gatekeeper._attempts == {}

    @pytest.mark.asyncio
    async def test_attempt_dropped_after_denial(self, gatekeeper, fake_server, validator):
        validator.validate.side_effect = TokenValidationError("expired")
        fake_server.connect(1, "g1")
        await gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))
        assert gatekeeper._attempts == {}

    @pytest.mark.asyncio
    async def test_newer_attempt_kept_when_older_finishes(self, gatekeeper, fake_server, validator):
        release = asyncio.Event()
        calls = 0

        async def validate(token):
            nonlocal calls
            calls += 1
            if calls == 2:
                await release.wait()
            return ProviderUser(id="42")

        validator.validate.side_effect = validate
        fake_server.connect(1, "g1")
        first = gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))
        await asyncio.sleep(0)
        second = gatekeeper.on_custom_packet(1, login_packet(accessToken="tok"))

        assert await first == Verdict.PENDING
        assert 1 in gatekeeper._attempts

        release.set()
        assert await second == Verdict.SUCCESS
        assert gatekeeper._attempts == {}
