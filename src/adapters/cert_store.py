"""Local certificate files.

The console returns the CA TLS certificate base64 encoded; the CA client needs
it as a PEM file on disk to validate the CA's TLS endpoint.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import shutil
from pathlib import Path

from core.errors import CertificateError

_logger = logging.getLogger(__name__)


def get_decoded_tls_cert(encoded: str, *, logger: logging.Logger | None = None) -> bytes:
    """Decode the base64 TLS cert found in a CA's MSP section."""

    log = logger or _logger
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        log.error("**ERROR** - problem decoding the tls cert: %s", exc)
        raise CertificateError(f"invalid base64 tls cert: {exc}") from exc


def write_file_to_local_directory(
    path: Path | str,
    data: bytes,
    *,
    logger: logging.Logger | None = None,
) -> Path:
    """Write `data` to `path` and fsync it."""

    log = logger or _logger
    target = Path(path)
    log.info("creating pem file %s from the tls cert passed in", target)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as exc:
        log.error("**ERROR** - problem writing %s: %s", target, exc)
        raise CertificateError(f"problem writing {target}: {exc}") from exc
    return target


def delete_locally_created_files(
    cert_path: Path | str,
    msp_directory: Path | str,
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Best-effort cleanup of the cert file and MSP directory left by a run."""

    log = logger or _logger
    log.info("deleting locally created files (cert stores, etc)")
    try:
        Path(cert_path).unlink(missing_ok=True)
    except OSError as exc:
        log.error("**ERROR** - problem removing %s: %s", cert_path, exc)
    try:
        shutil.rmtree(msp_directory)
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.error("**ERROR** - problem removing %s: %s", msp_directory, exc)
