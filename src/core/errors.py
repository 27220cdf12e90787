"""Exception taxonomy.

Two families live here:
- Poll errors: returned inside `PollOutcome.last_error`, never raised by the
  poller itself (only `ConfigurationError` is raised before polling starts).
- Adapter/provisioning errors: raised by the console/CA clients and the
  provisioning helpers, handled at the CLI boundary.
"""

from __future__ import annotations

from typing import Any


class IbpProvisionError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(IbpProvisionError):
    """Invalid inputs or missing setup information."""


class PollError(IbpProvisionError):
    """Base class for the outcome of a failed poll cycle."""

    kind: str = "poll"


class RequestTimeout(PollError):
    kind = "timeout"


class TransportError(PollError):
    kind = "transport"


class UnexpectedStatus(PollError):
    kind = "unexpected_status"

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"received status code {status_code} while polling {url}")
        self.status_code = status_code
        self.url = url


class DeadlineExceeded(PollError):
    kind = "deadline_exceeded"


class PollCancelled(PollError):
    kind = "cancelled"


class ConsoleApiError(IbpProvisionError):
    """Non-success response (or transport failure) from the console API."""

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CaError(IbpProvisionError):
    """Failure reported by a Fabric CA server."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        messages: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.messages = messages or []

    @property
    def already_registered(self) -> bool:
        text = " ".join([str(self), *self.messages])
        return "is already registered" in text


class CertificateError(IbpProvisionError):
    """A TLS certificate could not be decoded or written."""


class ProvisioningError(IbpProvisionError):
    """Invalid inputs to a provisioning step."""
