"""Session loop: provision, authenticate, poll, renew."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional

from ..auth.credentials import load_client_credential
from ..auth.tokens import TokenProvider
from ..config import ArcRelayConfig
from ..contracts import PopBinding, RelayEndpoint
from ..errors import AuthFault, ChannelFault, ConfigFault, ProvisionFault
from ..observability import LoggingObserver, Observer
from ..relay.channel import PinnedChannel
from ..relay.provisioner import RelayProvisioner
from ..utils.retry import RetryPolicy
from .stats import SessionStats

logger = logging.getLogger(__name__)

POP_HEADER = "Authorization-POP"
PAS_HEADER = "Authorization-PAS"
RECOVERABLE_FAULTS = (AuthFault, ProvisionFault, ChannelFault)


class SessionState(str, Enum):
    """States of the session lifecycle."""

    IDLE = "idle"
    PROVISIONING = "provisioning"
    AUTHENTICATING = "authenticating"
    POLLING = "polling"
    RENEWING = "renewing"
    FAILED = "failed"
    STOPPED = "stopped"


class SessionLoop:
    """Keeps an authenticated channel to the relayed API alive.

    One generation runs from provisioning a relay endpoint until a poll is
    rejected (or, with ``renew_before_seconds``, until the endpoint is about
    to expire).  Recoverable faults end the generation; the endpoint, the
    tokens bound to it and the statistics are discarded and the next
    generation starts from provisioning again.  :class:`ConfigFault` is never
    handled here.
    """

    def __init__(
        self,
        provisioner: RelayProvisioner,
        token_provider: TokenProvider,
        channel: PinnedChannel,
        pop_scope: str,
        authorization_scope: Optional[str] = None,
        observer: Optional[Observer] = None,
        retry_policy: Optional[RetryPolicy] = None,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.monotonic,
        renew_before_seconds: int = 0,
        poll_path: str = "",
        max_generations: Optional[int] = None,
    ) -> None:
        self._provisioner = provisioner
        self._tokens = token_provider
        self._channel = channel
        self._pop_scope = pop_scope
        self._authorization_scope = authorization_scope
        self._observer = observer or LoggingObserver(logger)
        self._retry = retry_policy or RetryPolicy()
        self._stop = stop_event or threading.Event()
        self._clock = clock
        self._timer = timer
        self._renew_before = renew_before_seconds
        self._poll_path = poll_path
        self._max_generations = max_generations

        self.state = SessionState.IDLE
        self.generation = 0
        self.endpoint: Optional[RelayEndpoint] = None
        self.headers: Optional[Dict[str, str]] = None
        self.stats: Optional[SessionStats] = None

    @classmethod
    def from_config(
        cls,
        config: ArcRelayConfig,
        observer: Optional[Observer] = None,
        retry_policy: Optional[RetryPolicy] = None,
        stop_event: Optional[threading.Event] = None,
        max_generations: Optional[int] = None,
    ) -> "SessionLoop":
        """Wire the production collaborators described by ``config``."""
        observer = observer or LoggingObserver(logger)
        tokens = TokenProvider(
            config.authority,
            load_client_credential(config),
            observer=observer,
            timeout=config.request_timeout,
        )
        return cls(
            provisioner=RelayProvisioner(config, tokens, observer=observer),
            token_provider=tokens,
            channel=PinnedChannel(
                config.expected_server_identity, timeout=config.request_timeout
            ),
            pop_scope=config.pop_scope,
            authorization_scope=config.authorization_scope,
            observer=observer,
            retry_policy=retry_policy or RetryPolicy.from_settings(config.retry),
            stop_event=stop_event,
            renew_before_seconds=config.renew_before_seconds,
            poll_path=config.poll_path,
            max_generations=max_generations,
        )

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Request the loop to end at the next state boundary."""
        self._stop.set()

    def run(self) -> None:
        """Run generations until stopped or out of retries.

        Raises:
            ConfigFault: Propagated untouched; the process should exit.
            AuthFault, ProvisionFault, ChannelFault: Only once the retry
                policy gives up.
        """
        attempt = 0
        try:
            while not self.stopped:
                if self._max_generations is not None and self.generation >= self._max_generations:
                    break
                self.generation += 1
                try:
                    self._run_generation()
                except RECOVERABLE_FAULTS as exc:
                    self._observer.error(
                        "Session generation ended",
                        exc,
                        generation=self.generation,
                        state=self.state.value,
                    )
                    if self.stats is not None and self.stats.total_calls:
                        attempt = 0
                    attempt += 1
                    self._renew()
                    if not self._retry.should_retry(attempt):
                        self.state = SessionState.FAILED
                        raise
                    if not self.stopped:
                        self._retry.wait(attempt, self._stop)
                else:
                    polled = self.stats is not None and self.stats.total_calls > 0
                    self._renew()
                    if polled:
                        attempt = 0
                    elif not self.stopped:
                        # endpoint was already inside the renewal window
                        attempt += 1
                        self._retry.wait(attempt, self._stop)
        except ConfigFault:
            self.state = SessionState.FAILED
            raise
        if self.state is not SessionState.FAILED:
            self.state = SessionState.STOPPED

    def _run_generation(self) -> None:
        self.state = SessionState.PROVISIONING
        self.endpoint = self._provisioner.provision()
        if self.stopped:
            return

        self.state = SessionState.AUTHENTICATING
        self.headers = self._authenticate(self.endpoint)
        if self.stopped:
            return

        self.state = SessionState.POLLING
        self.stats = SessionStats(started_at=self._clock())
        while not self.stopped:
            remaining = self.endpoint.seconds_remaining(self._clock())
            if self._renew_before > 0 and remaining <= self._renew_before:
                self._observer.event(
                    logging.INFO,
                    "Relay endpoint about to expire; renewing",
                    generation=self.generation,
                    refresh_in=remaining,
                )
                return
            self._poll_once()

    def _authenticate(self, endpoint: RelayEndpoint) -> Dict[str, str]:
        binding = PopBinding(uri=endpoint.request_url(self._poll_path), verb="GET")
        pop = self._tokens.acquire([self._pop_scope], binding)
        if not self._authorization_scope:
            return {"Authorization": f"PoP {pop.value}"}
        pas = self._tokens.acquire([self._authorization_scope])
        return {
            POP_HEADER: f"PoP {pop.value}",
            PAS_HEADER: f"Bearer {pas.value}",
        }

    def _poll_once(self) -> None:
        started = self._timer()
        response = self._channel.poll(self.endpoint, self.headers, self._poll_path)
        elapsed = self._timer() - started
        average = self.stats.record(elapsed)

        highlights = {
            key.lower().replace(" ", "_"): value
            for key, value in response.highlights().items()
        }
        self._observer.event(
            logging.INFO,
            "Relayed API call succeeded",
            refresh_in=self.endpoint.seconds_remaining(self._clock()),
            query=self.stats.total_calls,
            average_qps=round(average, 3),
            **highlights,
        )

    def _renew(self) -> None:
        self.state = SessionState.RENEWING
        self._tokens.clear()
        self.endpoint = None
        self.headers = None
        self.stats = None
