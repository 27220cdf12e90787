"""Availability poller.

Repeatedly issues a bounded-timeout GET against an endpoint until a success
status is seen or an overall deadline elapses.

Retry policy:
- A request timeout means "not ready yet": poll again.
- Any other transport failure, or a non-2xx status, ends the poll at once.
  `retry_transport_errors` / `retry_statuses` relax this, still bounded by the
  deadline. These retries wait at least one request timeout between attempts.

The poller never raises for poll failures; it returns a `PollOutcome` whose
`last_error` carries the typed reason. Only invalid inputs raise
`ConfigurationError`, before any request is sent.
"""

from __future__ import annotations

import logging
import math
import ssl
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Collection

import httpx

from adapters.http_client import build_client, resolve_verify
from core.config import AppSettings
from core.domain.models import PollOutcome
from core.errors import (
    ConfigurationError,
    DeadlineExceeded,
    PollCancelled,
    PollError,
    TransportError,
    UnexpectedStatus,
)
from core.interfaces.clock import Clock, SystemClock

CA_HEALTH_PATH = "/cainfo"

_logger = logging.getLogger(__name__)


@dataclass
class PollPolicy:
    """Knobs for `await_availability`, usually built from `AppSettings`."""

    per_request_timeout: float = 5.0
    overall_deadline: float = 600.0
    retry_delay: float = 0.0
    retry_transport_errors: bool = False
    retry_statuses: frozenset[int] = field(default_factory=frozenset)
    insecure: bool = False

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "PollPolicy":
        return cls(
            per_request_timeout=settings.poll_request_timeout_seconds,
            overall_deadline=settings.poll_deadline_seconds,
            retry_delay=settings.poll_retry_delay_seconds,
            retry_transport_errors=settings.poll_retry_transport_errors,
            insecure=settings.insecure_skip_tls_verify,
        )


def _seconds(value: float | timedelta, name: str) -> float:
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    if math.isnan(seconds) or seconds <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return seconds


def _validate_endpoint(endpoint: str) -> httpx.URL:
    try:
        url = httpx.URL(endpoint)
    except (httpx.InvalidURL, TypeError) as exc:
        raise ConfigurationError(f"invalid endpoint {endpoint!r}: {exc}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"endpoint must be an absolute http(s) URL, got {endpoint!r}")
    return url


def await_availability(
    endpoint: str,
    per_request_timeout: float | timedelta,
    overall_deadline: float | timedelta,
    *,
    client: httpx.Client | None = None,
    verify: ssl.SSLContext | bool = True,
    retry_delay: float = 0.0,
    retry_transport_errors: bool = False,
    retry_statuses: Collection[int] = (),
    cancel_event: threading.Event | None = None,
    clock: Clock | None = None,
    logger: logging.Logger | None = None,
) -> PollOutcome:
    """Poll `endpoint` until it answers with a 2xx status or the deadline passes.

    `client` is used as-is when given (the caller keeps ownership); otherwise a
    client is built with `verify` and closed before returning.
    """

    log = logger or _logger
    request_timeout = _seconds(per_request_timeout, "per_request_timeout")
    deadline_budget = _seconds(overall_deadline, "overall_deadline")
    if request_timeout >= deadline_budget:
        raise ConfigurationError(
            f"per_request_timeout ({request_timeout}s) must be lower than "
            f"overall_deadline ({deadline_budget}s)"
        )
    if retry_delay < 0:
        raise ConfigurationError(f"retry_delay must not be negative, got {retry_delay!r}")
    url = _validate_endpoint(endpoint)

    clock = clock or SystemClock()
    owns_client = client is None
    http = client if client is not None else build_client(verify=verify)

    start = clock.monotonic()
    deadline = start + deadline_budget
    attempts = 0

    def finish(succeeded: bool, error: PollError | None = None) -> PollOutcome:
        elapsed = timedelta(seconds=clock.monotonic() - start)
        return PollOutcome(succeeded=succeeded, elapsed=elapsed, attempts=attempts, last_error=error)

    def pause(minimum: float = 0.0) -> None:
        delay = max(retry_delay, minimum)
        remaining = deadline - clock.monotonic()
        if delay > 0 and remaining > 0:
            clock.sleep(min(delay, remaining))

    log.info("waiting for %s to come up (deadline %.0fs)", url, deadline_budget)
    try:
        while clock.monotonic() < deadline:
            if cancel_event is not None and cancel_event.is_set():
                log.warning("polling %s cancelled after %d attempt(s)", url, attempts)
                return finish(False, PollCancelled(f"polling {url} was cancelled"))

            remaining = deadline - clock.monotonic()
            attempts += 1
            log.debug("polling %s (attempt %d)", url, attempts)
            try:
                response = http.get(url, timeout=min(request_timeout, remaining))
            except httpx.TimeoutException:
                pause()
                continue
            except httpx.HTTPError as exc:
                if retry_transport_errors:
                    log.debug("transport error while polling %s, retrying: %s", url, exc)
                    pause(request_timeout)
                    continue
                log.error("**ERROR** - problem reaching %s - not a timeout: %s", url, exc)
                error = TransportError(f"problem reaching {url}: {exc}")
                error.__cause__ = exc
                return finish(False, error)

            if response.is_success:
                outcome = finish(True)
                log.info("%s came up - elapsed time was %s", url, outcome.elapsed)
                return outcome
            if response.status_code in retry_statuses:
                log.debug("status %d from %s, retrying", response.status_code, url)
                pause(request_timeout)
                continue
            log.error(
                "**ERROR** - received status code %d while polling %s",
                response.status_code,
                url,
            )
            return finish(False, UnexpectedStatus(response.status_code, str(url)))
    finally:
        if owns_client:
            http.close()

    log.error("**ERROR** - timed out waiting for %s after %.0fs", url, deadline_budget)
    return finish(False, DeadlineExceeded(f"timed out waiting for {url} after {deadline_budget}s"))


def wait_for_ca(
    api_url: str,
    *,
    policy: PollPolicy | None = None,
    client: httpx.Client | None = None,
    verify: ssl.SSLContext | bool | None = None,
    cancel_event: threading.Event | None = None,
    clock: Clock | None = None,
    logger: logging.Logger | None = None,
) -> PollOutcome:
    """Wait for a CA's `/cainfo` endpoint; raise the poll error on failure.

    `verify=None` derives TLS verification from the policy.
    """

    policy = policy or PollPolicy()
    if verify is None:
        verify = resolve_verify(insecure=policy.insecure)
    outcome = await_availability(
        api_url.rstrip("/") + CA_HEALTH_PATH,
        policy.per_request_timeout,
        policy.overall_deadline,
        client=client,
        verify=verify,
        retry_delay=policy.retry_delay,
        retry_transport_errors=policy.retry_transport_errors,
        retry_statuses=policy.retry_statuses,
        cancel_event=cancel_event,
        clock=clock,
        logger=logger,
    )
    if not outcome.succeeded:
        raise outcome.last_error or DeadlineExceeded(f"{api_url} did not come up")
    return outcome
