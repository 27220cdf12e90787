"""Fabric CA enrollment client.

Covers the subset of the Fabric CA REST API the provisioning flows need:
- `cainfo`, `enroll` (basic auth, CSR generated locally)
- `register`, `remove_identity` (token auth signed by an enrolled identity)

Keys are ECDSA P-256 (`cryptography`); the token header follows the Fabric CA
scheme: `b64(cert) "." b64(sig)` where `sig` signs
`method "." b64(uri) "." b64(body) "." b64(cert)` with SHA-256 and a low-S
signature.
"""

from __future__ import annotations

import base64
import logging
import ssl
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generator

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.x509.oid import NameOID

from adapters.http_client import build_client, resolve_verify
from core.config import AppSettings
from core.errors import CaError

logger = logging.getLogger(__name__)

_CURVE_ORDERS = {
    "secp256r1": 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551,
    "secp384r1": int(
        "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFC7634D81F4372DDF"
        "581A0DB248B0A77AECEC196ACCC52973",
        16,
    ),
}


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def sign_low_s(private_key: ec.EllipticCurvePrivateKey, message: bytes) -> bytes:
    """ECDSA-SHA256 DER signature with `s` folded into the lower half of the order."""

    der = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    order = _CURVE_ORDERS.get(private_key.curve.name)
    if order is None:
        return der
    r, s = decode_dss_signature(der)
    if s > order // 2:
        s = order - s
    return encode_dss_signature(r, s)


def create_token(
    private_key: ec.EllipticCurvePrivateKey,
    cert_pem: bytes,
    method: str,
    uri: str,
    body: bytes,
) -> str:
    b64_cert = _b64(cert_pem)
    payload = ".".join([method.upper(), _b64(uri.encode("utf-8")), _b64(body), b64_cert])
    signature = sign_low_s(private_key, payload.encode("utf-8"))
    return f"{b64_cert}.{_b64(signature)}"


class FabricCaTokenAuth(httpx.Auth):
    """Signs each request with an enrolled identity."""

    requires_request_body = True

    def __init__(self, private_key: ec.EllipticCurvePrivateKey, cert_pem: bytes) -> None:
        self._key = private_key
        self._cert = cert_pem

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        uri = request.url.raw_path.decode("ascii")
        request.headers["Authorization"] = create_token(
            self._key, self._cert, request.method, uri, request.content
        )
        yield request


@dataclass
class EnrollmentRequest:
    name: str
    secret: str
    type: str = "x509"
    profile: str = ""
    label: str = ""
    csr_hosts: list[str] = field(default_factory=list)


@dataclass
class RegistrationRequest:
    name: str
    secret: str = ""
    type: str = "client"
    affiliation: str = ""
    max_enrollments: int = 0
    attributes: list[dict[str, Any]] = field(default_factory=list)

    def to_body(self, ca_name: str | None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "id": self.name,
            "type": self.type,
            "affiliation": self.affiliation,
            "max_enrollments": self.max_enrollments,
        }
        if self.secret:
            body["secret"] = self.secret
        if self.attributes:
            body["attrs"] = self.attributes
        if ca_name:
            body["caname"] = ca_name
        return body


@dataclass
class Identity:
    """An enrolled identity: certificate, private key and the CA it came from."""

    name: str
    cert_pem: bytes
    private_key: ec.EllipticCurvePrivateKey
    client: "CaClient"

    @property
    def certificate(self) -> x509.Certificate:
        return x509.load_pem_x509_certificate(self.cert_pem)

    def private_key_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def auth(self) -> FabricCaTokenAuth:
        return FabricCaTokenAuth(self.private_key, self.cert_pem)

    def register(self, request: RegistrationRequest) -> str:
        """Register a new identity; returns its enrollment secret."""

        result = self.client.call(
            "POST",
            "/register",
            json=request.to_body(self.client.ca_name),
            auth=self.auth(),
        )
        return str(result.get("secret", request.secret))

    def register_and_enroll(self, request: RegistrationRequest) -> "Identity":
        secret = self.register(request)
        response = self.client.enroll(EnrollmentRequest(name=request.name, secret=secret))
        return response.identity

    def remove_identity(self, identity_id: str, *, force: bool = True) -> dict[str, Any]:
        params: dict[str, Any] = {"force": "true" if force else "false"}
        if self.client.ca_name:
            params["ca"] = self.client.ca_name
        return self.client.call(
            "DELETE",
            f"/identities/{identity_id}",
            params=params,
            auth=self.auth(),
        )


@dataclass
class EnrollmentResponse:
    identity: Identity
    ca_info: dict[str, Any] = field(default_factory=dict)


class CaClient:
    """Client for one Fabric CA server."""

    def __init__(
        self,
        url: str,
        ca_name: str | None = None,
        *,
        tls_cert_path: Path | str | None = None,
        verify: ssl.SSLContext | bool | None = None,
        http_client: httpx.Client | None = None,
        settings: AppSettings | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.ca_name = ca_name
        self.tls_cert_path = Path(tls_cert_path) if tls_cert_path else None
        self._owns_client = http_client is None
        if http_client is None:
            if verify is None:
                verify = resolve_verify(ca_cert_path=self.tls_cert_path)
            http_client = build_client(settings, verify=verify)
        self._http = http_client

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "CaClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def call(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        auth: httpx.Auth | tuple[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.url}/api/v1{path}"
        try:
            response = self._http.request(method, url, json=json, params=params, auth=auth)
        except httpx.HTTPError as exc:
            raise CaError(f"problem calling {method} {url}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise CaError(
                f"{method} {path} returned an unexpected body (status {response.status_code})",
                status_code=response.status_code,
            )

        messages = [
            str(item.get("message", item)) if isinstance(item, dict) else str(item)
            for item in payload.get("errors") or []
        ]
        if not response.is_success or not payload.get("success", False):
            detail = "; ".join(messages) or f"status {response.status_code}"
            raise CaError(
                f"{method} {path} failed: {detail}",
                status_code=response.status_code,
                messages=messages,
            )
        result = payload.get("result")
        return result if isinstance(result, dict) else {}

    def cainfo(self) -> dict[str, Any]:
        params = {"ca": self.ca_name} if self.ca_name else None
        return self.call("GET", "/cainfo", params=params)

    def enroll(self, request: EnrollmentRequest) -> EnrollmentResponse:
        if request.type != "x509":
            raise CaError(f"unsupported enrollment type {request.type!r}")

        private_key = ec.generate_private_key(ec.SECP256R1())
        builder = x509.CertificateSigningRequestBuilder().subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, request.name)])
        )
        if request.csr_hosts:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(host) for host in request.csr_hosts]),
                critical=False,
            )
        csr = builder.sign(private_key, hashes.SHA256())

        body: dict[str, Any] = {
            "certificate_request": csr.public_bytes(serialization.Encoding.PEM).decode("utf-8"),
            "profile": request.profile,
            "label": request.label,
        }
        if self.ca_name:
            body["caname"] = self.ca_name

        result = self.call("POST", "/enroll", json=body, auth=(request.name, request.secret))
        encoded_cert = result.get("Cert")
        if not isinstance(encoded_cert, str) or not encoded_cert:
            raise CaError("enroll response did not include a certificate")

        identity = Identity(
            name=request.name,
            cert_pem=base64.b64decode(encoded_cert),
            private_key=private_key,
            client=self,
        )
        logger.debug("enrolled %s with %s", request.name, self.url)
        return EnrollmentResponse(identity=identity, ca_info=result.get("ServerInfo") or {})
