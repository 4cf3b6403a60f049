"""Readiness probing against shell commands and HTTP(S) endpoints.

Two independent operations are provided:

- ``check_now``: a single, non-retried evaluation used to skip a state's
  actions when it is already satisfied.
- ``wait_until_ready``: a bounded polling loop used after actions have run.
  It stops on the first of (a) enough consecutive successful probes, (b) the
  wall-clock budget being used up, (c) the attempt budget being used up.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from .exceptions import FailureKind
from .executor import ActionExecutor
from .models import ReadinessSpec
from .utils import truncate_text

logger = logging.getLogger(__name__)

AttemptCallback = Callable[[int, bool, str], None]


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a pre-check or a polling loop."""

    ready: bool
    detail: str
    kind: str = "command"
    """Probe kind: 'command' or 'endpoint'"""

    attempts: int = 1
    failure: FailureKind | None = None
    duration_seconds: float = 0.0


class ReadinessProber:
    """Evaluates readiness specs using the executor and an HTTP client."""

    def __init__(
        self,
        executor: ActionExecutor,
        *,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the prober.

        Args:
            executor: Executor used to run readiness commands
            http_client: Client for endpoint probes; a short-lived client is
                created per request when omitted
            sleep: Sleep function used between polling attempts
            clock: Monotonic clock used for the polling time budget
        """
        self.executor = executor
        self._http_client = http_client
        self._sleep = sleep
        self._clock = clock

    def probe_endpoint(self, url: str, readiness: ReadinessSpec) -> tuple[bool, str]:
        """Issue a single GET against an endpoint.

        Any response that reaches the client without an error status counts
        as ready. Connection and protocol failures count as not ready.
        """
        try:
            if self._http_client is not None:
                response = self._http_client.get(url, timeout=readiness.request_timeout_seconds)
            else:
                with httpx.Client(
                    verify=readiness.verify_tls,
                    timeout=readiness.request_timeout_seconds,
                    follow_redirects=True,
                ) as client:
                    response = client.get(url)
        except httpx.HTTPError as err:
            logger.debug(f"Endpoint {url} not reachable: {err}")
            return False, f"{url} unreachable: {err}"

        if response.status_code >= 400:
            return False, f"{url} returned HTTP {response.status_code}"
        return True, f"{url} returned HTTP {response.status_code}"

    def probe_command(self, command: str, timeout: int = 0) -> tuple[bool, str]:
        """Run a readiness command once and classify its output.

        A positive timeout kills a hanging command, which then counts as not
        ready.
        """
        outcome = self.executor.run_check(command, timeout)
        if outcome.success:
            return True, f"'{command}' succeeded"
        return False, f"'{command}' failed: {truncate_text(outcome.error or '', 200)}"

    def _select(
        self,
        endpoint: str | None,
        command: str | None,
        readiness: ReadinessSpec,
    ) -> tuple[str, Callable[[int], tuple[bool, str]]]:
        # Endpoint takes precedence when both are configured
        if endpoint:
            return "endpoint", lambda timeout: self.probe_endpoint(endpoint, readiness)
        if command:
            return "command", lambda timeout: self.probe_command(command, timeout)
        raise ValueError("Readiness spec has no probe configured")

    def check_now(self, readiness: ReadinessSpec) -> ProbeResult:
        """Evaluate the pre-check once, without retries.

        A command pre-check is bounded by ``max_time_seconds``.
        """
        kind, probe = self._select(readiness.check_endpoint, readiness.check_command, readiness)
        start = self._clock()
        ready, detail = probe(max(readiness.max_time_seconds, 1))
        logger.info(f"Pre-check via {kind}: {'ready' if ready else 'not ready'} ({detail})")
        return ProbeResult(
            ready=ready,
            detail=detail,
            kind=kind,
            attempts=1,
            duration_seconds=self._clock() - start,
        )

    def wait_until_ready(
        self,
        readiness: ReadinessSpec,
        on_attempt: AttemptCallback | None = None,
    ) -> ProbeResult:
        """Poll until the wait probe reports ready or a budget runs out.

        Args:
            readiness: Spec holding wait_endpoint/wait_command and loop limits
            on_attempt: Optional callback invoked with (attempt, ready, detail)

        Returns:
            ProbeResult; on failure ``failure`` is READINESS_TIMEOUT or
            READINESS_RETRIES_EXHAUSTED
        """
        kind, probe = self._select(readiness.wait_endpoint, readiness.wait_command, readiness)
        required = max(readiness.successful_retries_required, 1)
        start = self._clock()
        attempts = 0
        streak = 0

        while True:
            attempts += 1
            # A single probe may not outlive the remaining time budget
            remaining = readiness.max_time_seconds - int(self._clock() - start)
            ready, detail = probe(max(remaining, 1))
            streak = streak + 1 if ready else 0
            logger.debug(
                f"Wait via {kind} attempt {attempts}: "
                f"{'ready' if ready else 'not ready'} (streak {streak}/{required})"
            )
            if on_attempt is not None:
                on_attempt(attempts, ready, detail)

            duration = self._clock() - start
            if streak >= required:
                return ProbeResult(
                    ready=True,
                    detail=f"Ready after {attempts} attempt(s): {detail}",
                    kind=kind,
                    attempts=attempts,
                    duration_seconds=duration,
                )

            elapsed = int(duration)
            if elapsed >= readiness.max_time_seconds:
                logger.warning(f"Wait via {kind} timed out after {elapsed}s")
                return ProbeResult(
                    ready=False,
                    detail=f"Timed out after {elapsed}s ({attempts} attempt(s)): {detail}",
                    kind=kind,
                    attempts=attempts,
                    failure=FailureKind.READINESS_TIMEOUT,
                    duration_seconds=duration,
                )

            if attempts >= readiness.max_retries:
                logger.warning(f"Wait via {kind} gave up after {attempts} attempt(s)")
                return ProbeResult(
                    ready=False,
                    detail=f"Max retries exceeded ({readiness.max_retries}): {detail}",
                    kind=kind,
                    attempts=attempts,
                    failure=FailureKind.READINESS_RETRIES_EXHAUSTED,
                    duration_seconds=duration,
                )

            self._sleep(readiness.retry_interval_seconds)
