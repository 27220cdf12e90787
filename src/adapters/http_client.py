"""Wrapper around httpx.

Why a wrapper:
- Standardizes timeouts, headers and TLS verification for the console, CA and
  health check clients.
- Makes testing easy: callers accept an injected client (e.g. one built on
  `httpx.MockTransport`).
"""

from __future__ import annotations

import logging
import ssl
from pathlib import Path

import httpx

from core.config import AppSettings
from core.errors import CertificateError

logger = logging.getLogger(__name__)


def resolve_verify(
    *,
    insecure: bool = False,
    ca_cert_path: Path | str | None = None,
    ca_cert_data: str | bytes | None = None,
) -> ssl.SSLContext | bool:
    """Translate TLS options into an httpx `verify` value.

    Certificate validation stays on unless `insecure` is explicitly set. A CA
    certificate (file or PEM text) replaces the system trust store. A file or
    PEM that cannot be loaded raises `CertificateError`.
    """

    if insecure:
        logger.warning("TLS certificate verification is disabled - do not use this in production")
        return False
    if ca_cert_path is not None:
        try:
            return ssl.create_default_context(cafile=str(ca_cert_path))
        except (ssl.SSLError, OSError) as exc:
            raise CertificateError(f"cannot load CA certificate {ca_cert_path}: {exc}") from exc
    if ca_cert_data is not None:
        try:
            pem = ca_cert_data.decode("ascii") if isinstance(ca_cert_data, bytes) else ca_cert_data
            return ssl.create_default_context(cadata=pem)
        except (ssl.SSLError, ValueError) as exc:
            raise CertificateError(f"invalid CA certificate data: {exc}") from exc
    return True


def build_client(
    settings: AppSettings | None = None,
    *,
    base_url: str = "",
    timeout: float | None = None,
    verify: ssl.SSLContext | bool | None = None,
    auth: httpx.Auth | None = None,
    extra_headers: dict[str, str] | None = None,
) -> httpx.Client:
    """Build an `httpx.Client` with the tool's defaults.

    `verify=None` means "use the settings": validation on, unless
    `insecure_skip_tls_verify` is set.
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)
    if verify is None:
        verify = resolve_verify(insecure=settings.insecure_skip_tls_verify)
    return httpx.Client(
        base_url=base_url,
        timeout=httpx.Timeout(timeout if timeout is not None else settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        verify=verify,
        auth=auth,
    )
