"""Tests for the shared httpx client helpers."""
from __future__ import annotations

import logging
import ssl

import pytest

from adapters.http_client import build_client, resolve_verify
from core.config import AppSettings
from core.errors import CertificateError
from fake_ca import FakeFabricCa


@pytest.fixture(scope="module")
def ca_pem() -> bytes:
    return FakeFabricCa().cert_pem


def _common_names(context: ssl.SSLContext) -> list[str]:
    return [
        value
        for cert in context.get_ca_certs()
        for rdn in cert["subject"]
        for key, value in rdn
        if key == "commonName"
    ]


class TestResolveVerify:
    def test_verification_on_by_default(self):
        assert resolve_verify() is True

    def test_insecure_disables_verification_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="adapters.http_client"):
            assert resolve_verify(insecure=True) is False
        assert any("disabled" in r.getMessage() for r in caplog.records)

    def test_insecure_wins_over_ca_cert(self, ca_pem):
        assert resolve_verify(insecure=True, ca_cert_data=ca_pem) is False

    def test_cadata_text_replaces_trust_store(self, ca_pem):
        context = resolve_verify(ca_cert_data=ca_pem.decode("ascii"))
        assert isinstance(context, ssl.SSLContext)
        assert _common_names(context) == ["fake-ca"]
        assert context.verify_mode == ssl.CERT_REQUIRED

    def test_cadata_bytes(self, ca_pem):
        context = resolve_verify(ca_cert_data=ca_pem)
        assert _common_names(context) == ["fake-ca"]

    def test_cafile(self, ca_pem, tmp_path):
        path = tmp_path / ".tlsca.pem"
        path.write_bytes(ca_pem)
        context = resolve_verify(ca_cert_path=path)
        assert _common_names(context) == ["fake-ca"]

    @pytest.mark.parametrize("data", ["not a pem", b"\xff\xfe\x00garbage"])
    def test_bad_cadata(self, data):
        with pytest.raises(CertificateError):
            resolve_verify(ca_cert_data=data)

    def test_missing_cafile(self, tmp_path):
        with pytest.raises(CertificateError):
            resolve_verify(ca_cert_path=tmp_path / "missing.pem")

    def test_cafile_without_certificate(self, tmp_path):
        path = tmp_path / "bad.pem"
        path.write_text("not a certificate", encoding="utf-8")
        with pytest.raises(CertificateError):
            resolve_verify(ca_cert_path=path)


def test_build_client_defaults():
    settings = AppSettings(_env_file=None, user_agent="ibp-provision/test")
    with build_client(settings, base_url="https://console.example.test") as client:
        assert client.headers["User-Agent"] == "ibp-provision/test"
        assert client.headers["Accept"] == "application/json"
        assert client.base_url.host == "console.example.test"
