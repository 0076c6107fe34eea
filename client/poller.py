"""
OAuth status poller and play-session handshake.

After the player opens the Discord login page, the broker learns the result
through the OAuth redirect. The client does not get a callback; it polls
``login-discord/status?state=<token>`` until the broker answers 200, then
exchanges the broker token for a play session.

The loop runs as a single asyncio task and stops cooperatively: the
``still_listening`` guard is checked before every request and every sleep.

Usage:
    poller = OAuthPoller(
        broker,
        PollPolicy(),
        still_listening=lambda: service.listening,
        on_identity=service.set_identity,
        on_progress=service.on_poll_progress,
    )
    poller.start()
"""

import asyncio
import json
import logging
import secrets
from typing import Callable, Optional

from pydantic import ValidationError

from client.broker_client import BrokerClient, BrokerResponse
from client.retry_policy import TERMINAL_FAIL_COUNT, PollDecision, PollPolicy
from core.async_utils import spawn
from core.errors import MalformedPayloadError, TransportError, describe_error
from schemas.broker import LoginStatusBody, PlaySessionBody
from schemas.identity import RemoteIdentity

logger = logging.getLogger(__name__)

CONNECTED_COMMENT = "connected successfully"


def _parse(model, body: str):
    try:
        return model.model_validate_json(body)
    except (ValidationError, json.JSONDecodeError) as e:
        raise MalformedPayloadError(f"Malformed broker body: {e}") from e


class OAuthPoller:
    """
    Polls the broker until the OAuth login completes.

    Attributes:
        state: Per-process OAuth state token (never logged in full)
        fail_count: Counted failures; TERMINAL_FAIL_COUNT after a 403/404
        comment: Last status comment shown under the login button
    """

    def __init__(
        self,
        broker: BrokerClient,
        policy: PollPolicy,
        still_listening: Callable[[], bool],
        on_identity: Callable[[RemoteIdentity], None],
        on_progress: Optional[Callable[[str, int], None]] = None,
        state: Optional[str] = None,
    ):
        self.broker = broker
        self.policy = policy
        self.still_listening = still_listening
        self.on_identity = on_identity
        self.on_progress = on_progress
        self.state = state or secrets.token_hex(32)
        self.fail_count = 0
        self.comment = ""
        self._task: Optional[asyncio.Task] = None

    @property
    def state_prefix(self) -> str:
        return self.state[:16]

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def login_page_url(self) -> str:
        return self.broker.login_page_url(self.state)

    def start(self) -> Optional[asyncio.Task]:
        """Start the poll loop. A loop already running is reused."""
        if self.running:
            logger.debug("Poll loop already running")
            return self._task
        self._task = spawn(self.run())
        return self._task

    # =========================================================================
    # Loop
    # =========================================================================

    async def run(self) -> Optional[RemoteIdentity]:
        """Poll until an identity is obtained, a terminal status, or the guard drops."""
        while self.still_listening():
            logger.debug(f"Checking login state {self.state_prefix}...")

            try:
                resp = await self.broker.get_status(self.state)
            except TransportError as e:
                self._counted_failure("???", describe_error(e, "poll login status", include_error_id=False))
                if not await self._sleep():
                    return None
                continue

            decision = self.policy.classify(resp.status)

            if decision == PollDecision.PROCEED:
                identity = await self._complete(resp)
                if identity is not None:
                    return identity

            elif decision == PollDecision.RETRY:
                self.fail_count = 0
                self._report("")

            elif decision == PollDecision.TERMINAL:
                self.fail_count = TERMINAL_FAIL_COUNT
                self._report(f"Fail: {resp.body}")
                logger.warning(f"Login status terminal: {resp.status}", extra={'status_code': resp.status})
                return None

            else:
                self._counted_failure(str(resp.status), resp.body)
                if self.policy.exhausted(self.fail_count):
                    logger.warning(f"Giving up after {self.fail_count} failed polls")
                    return None

            if not await self._sleep():
                return None

        logger.debug("Poll loop stopped: no longer listening")
        return None

    async def _complete(self, resp: BrokerResponse) -> Optional[RemoteIdentity]:
        """Handle a 200 from the status endpoint. None means keep polling."""
        try:
            status = _parse(LoginStatusBody, resp.body)
        except MalformedPayloadError as e:
            logger.warning(str(e))
            self._counted_failure(str(resp.status), resp.body)
            return None

        self.fail_count = 0

        if not self.still_listening():
            return None

        try:
            session = await self._handshake(status.token)
        except (TransportError, MalformedPayloadError) as e:
            self._report(describe_error(e, "create play session", include_error_id=False))
            return None

        identity = RemoteIdentity(
            session=session,
            provider_user_id=status.master_api_id,
            display_name=status.display_name,
            discriminator=status.discriminator,
            avatar_ref=status.avatar_ref,
            access_token=status.bearer_for_server,
        )
        logger.info(
            f"Discord login complete for {identity.provider_user_id}",
            extra={'provider_user_id': identity.provider_user_id},
        )
        self.on_identity(identity)
        self._report(CONNECTED_COMMENT)
        return identity

    async def _handshake(self, token: str) -> str:
        resp = await self.broker.create_play_session(token)
        if resp.status != 200:
            raise TransportError(f"status code {resp.status}", status_code=resp.status)
        return _parse(PlaySessionBody, resp.body).session

    # =========================================================================
    # Helpers
    # =========================================================================

    def _counted_failure(self, status: str, body: str) -> None:
        self.fail_count += 1
        self._report(f'Server returned {status} "{body}"')

    def _report(self, comment: str) -> None:
        self.comment = comment
        if self.on_progress is not None:
            self.on_progress(comment, self.fail_count)

    async def _sleep(self) -> bool:
        """Jittered sleep. False when the guard dropped and the loop should end."""
        if not self.still_listening():
            return False
        await asyncio.sleep(self.policy.next_delay())
        return True
